from .main import BundleService
from .models import OpenResult, VersionReport, classification_name

__all__ = ["BundleService", "OpenResult", "VersionReport", "classification_name"]
