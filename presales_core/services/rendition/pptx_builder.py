"""Render structured case-study content into a branded slide deck.

:class:`RenditionBuilder` is a pure function of ``(TemplateConfig,
content)``: it lays every section out on a single slide at the position
the template gives it, in ascending ``order`` (ties broken by key), and
returns the PPTX bytes together with a list of issues.  Nothing about the
content is dropped silently:

- a required section without content is reported (and shown as a visible
  placeholder, or raised in strict mode),
- text and bullets longer than their limits end in ``…``,
- surplus bullets collapse into a final ``… (+N more)`` bullet and surplus
  tags into a ``+N`` chip,
- lists below their minimum length and unavailable images produce
  warnings.

Core document properties are pinned so two builds of the same input are
structurally identical.
"""

from __future__ import annotations

import io
import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import structlog
from pptx import Presentation
from pptx.dml.color import RGBColor
from pptx.enum.shapes import MSO_SHAPE
from pptx.enum.text import MSO_ANCHOR, PP_ALIGN
from pptx.util import Inches, Pt

from presales_core.models.case_study import ExtractedCaseStudyContent, is_absent
from presales_core.models.rendition import RenditionIssue, RenditionIssueKind, RenditionResult
from presales_core.models.template import (
    BrandingConfig,
    SectionConfig,
    SectionType,
    TemplateConfig,
)
from presales_core.utils.errors import RenditionFailure, TemplateRuleViolation

logger = structlog.get_logger(logger_name=__name__)

ELLIPSIS = "…"
BULLET = "•"

_BLANK_LAYOUT = 6
_FIXED_TIMESTAMP = datetime(2000, 1, 1)
_FOOTER_GRAY = RGBColor(0x80, 0x80, 0x80)
_PLACEHOLDER_GRAY = RGBColor(0xA6, 0xA6, 0xA6)
_WHITE = RGBColor(0xFF, 0xFF, 0xFF)
_HEADING_HEIGHT_IN = 0.45
_CHIP_HEIGHT_IN = 0.32
_CHIP_GAP_IN = 0.1
_BULLET_MARKER_RE = re.compile(rf"^[{BULLET}*-]\s+")


def truncate_text(text: str, limit: int | None) -> tuple[str, bool]:
    """Cut *text* to at most *limit* characters, ending in ``…`` when cut."""
    if limit is None or len(text) <= limit:
        return text, False
    if limit <= 1:
        return ELLIPSIS, True
    return text[: limit - 1].rstrip() + ELLIPSIS, True


def _as_items(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        lines = [_BULLET_MARKER_RE.sub("", line.strip()).strip() for line in value.splitlines()]
        return [line for line in lines if line]
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    return " ".join(_as_items(value))


def _rgb(hex_color: str) -> RGBColor:
    return RGBColor.from_string(hex_color.lstrip("#").upper())


class RenditionBuilder:
    """Builds a one-slide PPTX deck from a template and a content mapping."""

    def build(
        self,
        template: TemplateConfig,
        content: Mapping[str, Any] | ExtractedCaseStudyContent,
        images: Mapping[str, bytes] | None = None,
        strict: bool = False,
    ) -> RenditionResult:
        """Render *content* onto *template*.

        Parameters
        ----------
        template:
            Slide size, branding and sections.
        content:
            Section key to a string, a list of strings, or ``None``.
        images:
            Image bytes keyed by the reference used in the content, the
            logo URL or the background image name.
        strict:
            Raise instead of rendering when required sections are missing.

        Raises
        ------
        TemplateRuleViolation
            In strict mode, listing every required section without content.
        RenditionFailure
            If the deck cannot be assembled.
        """
        values = content.sections if isinstance(content, ExtractedCaseStudyContent) else dict(content)
        images = images or {}

        missing = [
            s.key for s in template.ordered_sections if s.required and is_absent(values.get(s.key))
        ]
        if strict and missing:
            raise TemplateRuleViolation(
                message=f"Required sections have no content: {', '.join(missing)}",
                missing_sections=missing,
            )

        issues: list[RenditionIssue] = []
        try:
            prs = Presentation()
            prs.slide_width = Inches(template.slide_width)
            prs.slide_height = Inches(template.slide_height)
            slide = prs.slides.add_slide(prs.slide_layouts[_BLANK_LAYOUT])

            self._add_background(slide, template, images, issues)
            for section in template.ordered_sections:
                self._render_section(slide, template, section, values.get(section.key), images, issues)
            self._add_logo(slide, template, images, issues)
            if template.footer_text:
                self._add_footer(slide, template)

            self._pin_properties(prs, template, values)
            buffer = io.BytesIO()
            prs.save(buffer)
        except Exception as exc:
            raise RenditionFailure(message=f"Cannot build slide deck: {exc}", provider_name="python-pptx") from exc

        result = RenditionResult(content=buffer.getvalue(), issues=tuple(issues))
        logger.info(
            "rendition_built",
            template_version=template.version,
            sections=len(template.sections),
            size_bytes=len(result.content),
            missing=result.missing_sections,
            truncated=result.truncated_sections,
            issues=len(issues),
        )
        return result

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _render_section(
        self,
        slide,
        template: TemplateConfig,
        section: SectionConfig,
        value: Any,
        images: Mapping[str, bytes],
        issues: list[RenditionIssue],
    ) -> None:
        branding = section.branding.apply_to(template.branding) if section.branding else template.branding
        box = section.position.to_inches(template.slide_width, template.slide_height)

        if is_absent(value):
            if section.required:
                issues.append(
                    RenditionIssue(
                        section=section.key,
                        kind=RenditionIssueKind.MISSING_REQUIRED,
                        message=f"Required section '{section.label}' has no content",
                    )
                )
                self._render_placeholder(slide, box, section, branding, "[Content missing]")
            return

        if section.type is SectionType.TEXT:
            self._render_text(slide, box, section, branding, _as_text(value), issues)
        elif section.type is SectionType.BULLET_LIST:
            self._render_bullets(slide, box, section, branding, _as_items(value), issues)
        elif section.type is SectionType.TAG_LIST:
            self._render_tags(slide, box, section, branding, _as_items(value), issues)
        else:
            self._render_image(slide, box, section, branding, value, images, issues)

    def _render_text(self, slide, box, section, branding, text, issues) -> None:
        rules = section.content_rules
        text, cut = truncate_text(text, rules.max_characters)
        if cut:
            issues.append(
                RenditionIssue(
                    section=section.key,
                    kind=RenditionIssueKind.TRUNCATED,
                    message=f"Text truncated to {rules.max_characters} characters",
                )
            )
        tf = self._text_frame(slide, box, section, branding)
        self._add_paragraph(tf, text, branding.font_family, branding.body_font_size, branding.secondary_color)

    def _render_bullets(self, slide, box, section, branding, items, issues) -> None:
        rules = section.content_rules
        self._check_minimum(section, len(items), rules.min_bullets, "bullets", issues)

        shown = items
        overflow = 0
        if rules.max_bullets is not None and len(items) > rules.max_bullets:
            shown = items[: rules.max_bullets]
            overflow = len(items) - rules.max_bullets
            issues.append(
                RenditionIssue(
                    section=section.key,
                    kind=RenditionIssueKind.TRUNCATED,
                    message=f"{overflow} bullet(s) beyond the maximum of {rules.max_bullets} collapsed",
                )
            )

        lines: list[str] = []
        shortened = 0
        for item in shown:
            line, cut = truncate_text(item, rules.max_bullet_chars)
            shortened += cut
            lines.append(line)
        if shortened:
            issues.append(
                RenditionIssue(
                    section=section.key,
                    kind=RenditionIssueKind.TRUNCATED,
                    message=f"{shortened} bullet(s) truncated to {rules.max_bullet_chars} characters",
                )
            )
        if overflow:
            lines.append(f"{ELLIPSIS} (+{overflow} more)")

        tf = self._text_frame(slide, box, section, branding)
        for line in lines:
            self._add_paragraph(
                tf, f"{BULLET} {line}", branding.font_family, branding.bullet_font_size, branding.secondary_color
            )

    def _render_tags(self, slide, box, section, branding, items, issues) -> None:
        rules = section.content_rules
        self._check_minimum(section, len(items), rules.min_items, "items", issues)

        chips = items
        if rules.max_items is not None and len(items) > rules.max_items:
            overflow = len(items) - rules.max_items
            chips = items[: rules.max_items] + [f"+{overflow}"]
            issues.append(
                RenditionIssue(
                    section=section.key,
                    kind=RenditionIssueKind.TRUNCATED,
                    message=f"{overflow} item(s) beyond the maximum of {rules.max_items} collapsed",
                )
            )

        left, top, width, height = box
        self._text_frame(slide, (left, top, width, _HEADING_HEIGHT_IN), section, branding)
        x, y = left, top + _HEADING_HEIGHT_IN
        for tag in chips:
            chip_width = min(width, len(tag) * branding.bullet_font_size * 0.0075 + 0.3)
            if x + chip_width > left + width + 1e-6 and x > left:
                x = left
                y += _CHIP_HEIGHT_IN + _CHIP_GAP_IN
            chip = slide.shapes.add_shape(
                MSO_SHAPE.ROUNDED_RECTANGLE, Inches(x), Inches(y), Inches(chip_width), Inches(_CHIP_HEIGHT_IN)
            )
            chip.fill.solid()
            chip.fill.fore_color.rgb = _rgb(branding.accent_color)
            chip.line.fill.background()
            tf = chip.text_frame
            tf.vertical_anchor = MSO_ANCHOR.MIDDLE
            para = tf.paragraphs[0]
            para.alignment = PP_ALIGN.CENTER
            run = para.add_run()
            run.text = tag
            run.font.name = branding.font_family
            run.font.size = Pt(branding.bullet_font_size)
            run.font.color.rgb = _WHITE
            x += chip_width + _CHIP_GAP_IN

    def _render_image(self, slide, box, section, branding, value, images, issues) -> None:
        reference = _as_text(value) if isinstance(value, str) else next(iter(_as_items(value)), "")
        data = images.get(reference)
        if data is not None:
            left, top, width, height = box
            try:
                slide.shapes.add_picture(
                    io.BytesIO(data), Inches(left), Inches(top), Inches(width), Inches(height)
                )
                return
            except Exception as exc:
                logger.warning("rendition_image_invalid", section=section.key, error=str(exc))
        issues.append(
            RenditionIssue(
                section=section.key,
                kind=RenditionIssueKind.IMAGE_UNAVAILABLE,
                message=f"Image {reference!r} is not available",
            )
        )
        self._render_placeholder(slide, box, section, branding, f"[Image: {section.label}]")

    def _render_placeholder(self, slide, box, section, branding, text) -> None:
        tf = self._text_frame(slide, box, section, branding)
        para = tf.add_paragraph()
        run = para.add_run()
        run.text = text
        run.font.italic = True
        run.font.name = branding.font_family
        run.font.size = Pt(branding.body_font_size)
        run.font.color.rgb = _PLACEHOLDER_GRAY

    @staticmethod
    def _check_minimum(section, count, minimum, noun, issues) -> None:
        if minimum is not None and count < minimum:
            issues.append(
                RenditionIssue(
                    section=section.key,
                    kind=RenditionIssueKind.BELOW_MINIMUM,
                    message=f"{count} {noun} supplied, at least {minimum} expected",
                )
            )

    # ------------------------------------------------------------------
    # Shapes
    # ------------------------------------------------------------------

    @staticmethod
    def _text_frame(slide, box, section: SectionConfig, branding: BrandingConfig):
        """Add a textbox at *box* whose first paragraph is the section label."""
        left, top, width, height = box
        shape = slide.shapes.add_textbox(Inches(left), Inches(top), Inches(width), Inches(height))
        shape.name = f"section:{section.key}"
        tf = shape.text_frame
        tf.word_wrap = True
        run = tf.paragraphs[0].add_run()
        run.text = section.label
        run.font.bold = True
        run.font.name = branding.heading_font
        run.font.size = Pt(branding.heading_font_size)
        run.font.color.rgb = _rgb(branding.primary_color)
        return tf

    @staticmethod
    def _add_paragraph(tf, text: str, font: str, size: int, color: str) -> None:
        para = tf.add_paragraph()
        run = para.add_run()
        run.text = text
        run.font.name = font
        run.font.size = Pt(size)
        run.font.color.rgb = _rgb(color)

    @staticmethod
    def _add_background(slide, template: TemplateConfig, images, issues) -> None:
        if not template.background_image:
            return
        data = images.get(template.background_image)
        if data is None:
            issues.append(
                RenditionIssue(
                    section="background",
                    kind=RenditionIssueKind.IMAGE_UNAVAILABLE,
                    message=f"Background image {template.background_image!r} is not available",
                )
            )
            return
        slide.shapes.add_picture(
            io.BytesIO(data), 0, 0, Inches(template.slide_width), Inches(template.slide_height)
        )

    @staticmethod
    def _add_logo(slide, template: TemplateConfig, images, issues) -> None:
        logo = template.branding.logo_url
        if not logo:
            return
        data = images.get(logo)
        if data is None:
            issues.append(
                RenditionIssue(
                    section="logo",
                    kind=RenditionIssueKind.IMAGE_UNAVAILABLE,
                    message=f"Logo {logo!r} is not available",
                )
            )
            return
        slide.shapes.add_picture(
            io.BytesIO(data), Inches(template.slide_width - 1.6), Inches(0.2), width=Inches(1.4)
        )

    @staticmethod
    def _add_footer(slide, template: TemplateConfig) -> None:
        shape = slide.shapes.add_textbox(
            Inches(0), Inches(template.slide_height - 0.4), Inches(template.slide_width), Inches(0.3)
        )
        shape.name = "footer"
        para = shape.text_frame.paragraphs[0]
        para.alignment = PP_ALIGN.CENTER
        run = para.add_run()
        run.text = template.footer_text or ""
        run.font.name = template.branding.font_family
        run.font.size = Pt(8)
        run.font.color.rgb = _FOOTER_GRAY

    @staticmethod
    def _pin_properties(prs, template: TemplateConfig, values: Mapping[str, Any]) -> None:
        props = prs.core_properties
        title = values.get("title")
        props.title = _as_text(title) if not is_absent(title) else "Case Study"
        props.author = "presales-core"
        props.last_modified_by = "presales-core"
        props.subject = f"template {template.version}"
        props.revision = 1
        props.created = _FIXED_TIMESTAMP
        props.modified = _FIXED_TIMESTAMP
        props.last_printed = _FIXED_TIMESTAMP
