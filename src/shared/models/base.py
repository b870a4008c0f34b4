"""Base model configuration for all Pydantic models."""

from pydantic import BaseModel, ConfigDict


class InstallerBaseModel(BaseModel):
    """Base model with common configuration.

    Conventions:
    - All timestamps are timezone-aware (UTC)
    - Field names are lowercase snake_case and match the column names
      of the corresponding ORM model, so rows load via ``model_validate``
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
    )
