"""Pydantic model for package engine configuration."""

from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


class PackageSettings(BaseModel):
    """Settings shared by every Package opened with them."""

    temp_dir: Optional[Path] = Field(
        default=None,
        description="Directory for working copies. Defaults to the system temp directory.",
    )
    temp_prefix: str = Field(default="PPTX_", description="File name prefix of working copies")
    compression: Literal["deflated", "stored"] = Field(
        default="deflated", description="Zip method used when the archive is rewritten"
    )
    placeholder_open: str = Field(default="{{", min_length=1)
    placeholder_close: str = Field(default="}}", min_length=1)
    reuse_identical_parts: bool = Field(
        default=True,
        description="Link imported slides to byte-identical parts already in the "
        "target (layouts, masters, themes, media) instead of copying them",
    )
    keep_working_copy: bool = Field(
        default=False,
        description="Leave the working copy on disk when the package is closed (debugging)",
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PackageSettings":
        """Load settings from a YAML configuration file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    def to_yaml(self, path: str | Path) -> None:
        """Save settings to a YAML configuration file."""
        path = Path(path)
        data = self.model_dump(mode="json", exclude_none=True)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
