from meterhub.models.reading import Reading
from meterhub.models.runtime_setting import RuntimeSetting

__all__ = ["Reading", "RuntimeSetting"]
