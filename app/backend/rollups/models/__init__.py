"""ORM model package."""

from rollups.models.entities import (
    ChangeRequest,
    ChangeRequestStatus,
    KpiDefinitionRecord,
    Portfolio,
    PortfolioProject,
    Program,
    Project,
    ProjectBudget,
    ProjectKpiValue,
    Risk,
)

__all__ = [
    "ChangeRequest",
    "ChangeRequestStatus",
    "KpiDefinitionRecord",
    "Portfolio",
    "PortfolioProject",
    "Program",
    "Project",
    "ProjectBudget",
    "ProjectKpiValue",
    "Risk",
]
