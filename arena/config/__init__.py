from arena.config.feature_flags import FeatureFlags, get_bool_env, get_int_env
from arena.config.settings import Settings

__all__ = ["FeatureFlags", "Settings", "get_bool_env", "get_int_env"]
