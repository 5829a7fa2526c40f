"""
Template (snapshot) management: category definitions and the manager that
creates, lists, reads, deletes and reconciles template files.
"""

from src.portal_data.templates.categories import (
    AGENTS,
    DEFAULT_CATEGORIES,
    MASK,
    ORG_STRUCTURE,
    SYSTEM_SETTINGS,
    USERS,
    CategoryRegistry,
    FieldReference,
    TemplateCategory,
)
from src.portal_data.templates.manager import (
    BACKUP_DIRNAME,
    TEMPLATE_SUFFIX,
    TemplateManager,
    slugify,
)

__all__ = [
    # Categories
    "AGENTS",
    "DEFAULT_CATEGORIES",
    "MASK",
    "ORG_STRUCTURE",
    "SYSTEM_SETTINGS",
    "USERS",
    "CategoryRegistry",
    "FieldReference",
    "TemplateCategory",
    # Manager
    "BACKUP_DIRNAME",
    "TEMPLATE_SUFFIX",
    "TemplateManager",
    "slugify",
]
