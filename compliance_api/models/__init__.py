# compliance_api/models/__init__.py
import importlib

# every module that declares tables; order follows the foreign keys
MODEL_MODULES = ("user", "project", "submission", "annual")


def load_all():
    """Import all model modules so ``db.metadata`` is complete (create_all, migrations)."""
    for name in MODEL_MODULES:
        importlib.import_module(f"{__name__}.{name}")
