"""Rendition template configuration.

A :class:`TemplateConfig` describes a target slide: its size, branding and
an ordered list of sections, each with a type, a position rectangle and
content rules.  Templates are immutable once built; use
:meth:`TemplateConfig.from_mapping` to build one from loaded YAML/JSON
(camelCase or snake_case keys are both accepted).
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from presales_core.utils.errors import ConfigurationError

_HEX_COLOR_RE = re.compile(r"^#?[0-9A-Fa-f]{6}$")


class _TemplateModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


def _check_color(value: str | None) -> str | None:
    if value is None:
        return None
    if not _HEX_COLOR_RE.match(value):
        raise ValueError(f"invalid hex color {value!r}")
    return value if value.startswith("#") else f"#{value}"


class SectionType(str, Enum):
    TEXT = "text"
    BULLET_LIST = "bullet-list"
    TAG_LIST = "tag-list"
    IMAGE = "image"

    @classmethod
    def _missing_(cls, value: object) -> "SectionType | None":
        # TEXT / BULLET_LIST / bullet_list all map onto the canonical names
        if isinstance(value, str):
            normalised = value.strip().lower().replace("_", "-")
            for member in cls:
                if member.value == normalised:
                    return member
        return None

    @property
    def is_list(self) -> bool:
        return self in (SectionType.BULLET_LIST, SectionType.TAG_LIST)


class BrandingConfig(_TemplateModel):
    logo_url: str | None = None
    primary_color: str = "#1F3864"
    secondary_color: str = "#404040"
    accent_color: str = "#2E75B6"
    font_family: str = "Calibri"
    heading_font_family: str | None = None
    heading_font_size: int = Field(default=16, gt=0)
    body_font_size: int = Field(default=12, gt=0)
    bullet_font_size: int = Field(default=11, gt=0)

    @field_validator("primary_color", "secondary_color", "accent_color")
    @classmethod
    def _valid_color(cls, value: str | None) -> str | None:
        return _check_color(value)

    @property
    def heading_font(self) -> str:
        return self.heading_font_family or self.font_family


class BrandingOverride(_TemplateModel):
    """Per-section replacement of any subset of the template branding."""

    primary_color: str | None = None
    secondary_color: str | None = None
    accent_color: str | None = None
    font_family: str | None = None
    heading_font_family: str | None = None
    heading_font_size: int | None = Field(default=None, gt=0)
    body_font_size: int | None = Field(default=None, gt=0)
    bullet_font_size: int | None = Field(default=None, gt=0)

    @field_validator("primary_color", "secondary_color", "accent_color")
    @classmethod
    def _valid_color(cls, value: str | None) -> str | None:
        return _check_color(value)

    def apply_to(self, branding: BrandingConfig) -> BrandingConfig:
        update = self.model_dump(exclude_none=True)
        return branding.model_copy(update=update) if update else branding


class PositionConfig(_TemplateModel):
    """Section rectangle, in inches or as fractions of the slide size."""

    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)
    units: Literal["inches", "fraction"] = "inches"

    @model_validator(mode="after")
    def _check_fraction_bounds(self) -> "PositionConfig":
        if self.units == "fraction" and (self.x + self.width > 1.0 or self.y + self.height > 1.0):
            raise ValueError("fractional position must stay within the slide")
        return self

    def to_inches(self, slide_width: float, slide_height: float) -> tuple[float, float, float, float]:
        if self.units == "fraction":
            return (
                self.x * slide_width,
                self.y * slide_height,
                self.width * slide_width,
                self.height * slide_height,
            )
        return self.x, self.y, self.width, self.height


class ContentRulesConfig(_TemplateModel):
    max_characters: int | None = Field(default=None, gt=0)
    min_bullets: int | None = Field(default=None, ge=0)
    max_bullets: int | None = Field(default=None, gt=0)
    max_bullet_chars: int | None = Field(default=None, gt=0)
    min_items: int | None = Field(default=None, ge=0)
    max_items: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ContentRulesConfig":
        if self.min_bullets is not None and self.max_bullets is not None:
            if self.min_bullets > self.max_bullets:
                raise ValueError("min_bullets exceeds max_bullets")
        if self.min_items is not None and self.max_items is not None:
            if self.min_items > self.max_items:
                raise ValueError("min_items exceeds max_items")
        return self


class SectionConfig(_TemplateModel):
    key: str = Field(min_length=1)
    label: str
    required: bool = False
    order: int = 0
    type: SectionType = SectionType.TEXT
    position: PositionConfig
    content_rules: ContentRulesConfig = Field(default_factory=ContentRulesConfig)
    branding: BrandingOverride | None = None


class TemplateConfig(_TemplateModel):
    version: str = "1.0"
    aspect_ratio: str = "16:9"
    slide_width: float = Field(default=13.333, gt=0, description="Inches.")
    slide_height: float = Field(default=7.5, gt=0, description="Inches.")
    branding: BrandingConfig = Field(default_factory=BrandingConfig)
    sections: tuple[SectionConfig, ...]
    background_image: str | None = None
    footer_text: str | None = None

    @model_validator(mode="after")
    def _check_sections(self) -> "TemplateConfig":
        if not self.sections:
            raise ValueError("a template needs at least one section")
        keys = [s.key for s in self.sections]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise ValueError(f"duplicate section keys: {', '.join(duplicates)}")
        for section in self.sections:
            if section.position.units == "inches":
                pos = section.position
                if pos.x + pos.width > self.slide_width + 1e-6 or pos.y + pos.height > self.slide_height + 1e-6:
                    raise ValueError(f"section {section.key!r} lies outside the slide")
        return self

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "TemplateConfig":
        """Validated factory: raises ConfigurationError instead of ValidationError."""
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(message=f"Invalid template config: {exc}") from exc

    @property
    def ordered_sections(self) -> tuple[SectionConfig, ...]:
        return tuple(sorted(self.sections, key=lambda s: (s.order, s.key)))

    @property
    def section_keys(self) -> tuple[str, ...]:
        return tuple(s.key for s in self.ordered_sections)

    def section(self, key: str) -> SectionConfig | None:
        return next((s for s in self.sections if s.key == key), None)
