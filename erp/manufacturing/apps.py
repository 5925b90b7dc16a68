from django.apps import AppConfig


class ManufacturingConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'erp.manufacturing'
    label = 'manufacturing'

    def ready(self):
        """Build the stage registries once and connect cache signals"""
        from .executors import StageExecutorRegistry
        from .orchestrator import CONFIG_TYPES
        from .stage_configurations import StageConfigRegistry
        from . import signals  # noqa: F401

        self.stage_configs = StageConfigRegistry.default()
        self.executor_registry = StageExecutorRegistry(self.stage_configs, CONFIG_TYPES)
