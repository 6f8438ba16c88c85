"""Renderer implementations turning layout drawings into SVG / HTML output."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, cast

from jianpuviz.layout_engine import Circle, Drawing, Line, TextGlyph

INK = "#000000"


def _escape_html(text: str) -> str:
    """Escape the three characters that are unsafe in HTML text content."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _escape_attr(text: str) -> str:
    return _escape_html(text).replace('"', "&quot;")


def _fmt(value: float) -> str:
    """Format a coordinate without a trailing ``.0``."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}".rstrip("0").rstrip(".")


class SheetRenderer(ABC):
    """Abstract renderer for a whole document."""

    @property
    @abstractmethod
    def default_extension(self) -> str:
        """Default filename extension for this renderer."""

    @abstractmethod
    def render(
        self,
        *,
        title: str,
        drawings: list[Drawing] | None = None,
        musicxml_bytes: bytes | None = None,
    ) -> str:
        """Render output into a file content string."""


class SvgRenderer:
    """Serialise one section drawing into a standalone SVG document."""

    default_extension = ".svg"

    def _glyph(self, glyph: TextGlyph) -> str:
        dy = ' dy="0.35em"' if glyph.centered else ""
        return (
            f'<text x="{_fmt(glyph.x)}" y="{_fmt(glyph.y)}"{dy} text-anchor="{glyph.anchor}" '
            f'fill="{INK}" font-weight="{glyph.font_weight}" font-family="{_escape_attr(glyph.font_family)}" '
            f'font-size="{glyph.font_size}">{_escape_html(glyph.text)}</text>'
        )

    def _line(self, line: Line) -> str:
        return (
            f'<line x1="{_fmt(line.x1)}" y1="{_fmt(line.y1)}" x2="{_fmt(line.x2)}" y2="{_fmt(line.y2)}" '
            f'stroke="{INK}" stroke-width="{_fmt(line.stroke_width)}" />'
        )

    def _circle(self, circle: Circle) -> str:
        return f'<circle cx="{_fmt(circle.cx)}" cy="{_fmt(circle.cy)}" r="{_fmt(circle.r)}" fill="{INK}" />'

    def render(self, drawing: Drawing) -> str:
        body: list[str] = []
        for primitive in drawing.primitives:
            if isinstance(primitive, TextGlyph):
                body.append(self._glyph(primitive))
            elif isinstance(primitive, Line):
                body.append(self._line(primitive))
            else:
                body.append(self._circle(primitive))

        width = _fmt(drawing.canvas.width)
        height = _fmt(drawing.canvas.height)
        elements = "".join(f"\n  {element}" for element in body)
        return (
            f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}" '
            f'viewBox="0 0 {width} {height}">'
            f'\n  <rect width="100%" height="100%" fill="#ffffff" />{elements}\n</svg>'
        )


def build_html(title: str, svgs: list[str], subtitle: str = "") -> str:
    """
    Wrap a list of SVG strings in a self-contained HTML document.

    Each SVG is placed in its own ``.page`` div. The stylesheet includes
    both screen styles (white cards on a grey background) and print styles
    (``page-break-after: always`` per page, no drop shadows).
    """
    title_safe = _escape_html(title)
    heading = f"  <h1>{title_safe}</h1>\n" if title else ""
    if subtitle:
        heading += f'  <p class="subtitle">{_escape_html(subtitle)}</p>\n'
    pages = "\n".join(f'  <div class="page">{svg}</div>' for svg in svgs)

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  <title>{title_safe}</title>
  <style>
    *, *::before, *::after {{ box-sizing: border-box; }}
    body {{
      font-family: Georgia, serif;
      background: #f0f0f0;
      margin: 0;
      padding: 2rem;
    }}
    h1 {{
      text-align: center;
      font-size: 1.6rem;
      margin-bottom: 0.5rem;
      color: #222;
    }}
    .subtitle {{
      text-align: center;
      color: #666;
      margin-bottom: 2rem;
    }}
    .page {{
      background: #fff;
      box-shadow: 0 2px 8px rgba(0, 0, 0, 0.15);
      margin: 0 auto 2rem;
      max-width: 960px;
      padding: 1rem;
      overflow-x: auto;
    }}
    .page svg {{
      display: block;
      margin: 0 auto;
    }}
    @media print {{
      body {{
        background: #fff;
        padding: 0;
        margin: 0;
      }}
      .page {{
        box-shadow: none;
        page-break-after: always;
        max-width: 100%;
        padding: 0;
        margin: 0;
      }}
      .page:last-child {{
        page-break-after: avoid;
      }}
    }}
  </style>
</head>
<body>
{heading}{pages}
</body>
</html>"""


class JianpuHtmlRenderer(SheetRenderer):
    """Render every section drawing as inline SVG inside one HTML page."""

    def __init__(self, subtitle: str = "") -> None:
        self.subtitle = subtitle
        self.svg_renderer = SvgRenderer()

    @property
    def default_extension(self) -> str:
        return ".html"

    def render(
        self,
        *,
        title: str,
        drawings: list[Drawing] | None = None,
        musicxml_bytes: bytes | None = None,
    ) -> str:
        if drawings is None:
            raise ValueError("drawings are required for Jianpu HTML rendering.")
        svgs = [self.svg_renderer.render(drawing) for drawing in drawings]
        return build_html(title, svgs, subtitle=self.subtitle)


class VerovioStaffRenderer(SheetRenderer):
    """Engrave MusicXML as staff notation with verovio, inside an HTML page."""

    # Verovio A4 layout constants (verovio abstract units; ~1 unit ≈ 0.1 mm)
    _PAGE_HEIGHT: int = 2970
    _PAGE_WIDTH: int = 2100
    _SCALE: int = 40
    _PAGE_MARGIN: int = 100

    @property
    def default_extension(self) -> str:
        return ".html"

    def render(
        self,
        *,
        title: str,
        drawings: list[Drawing] | None = None,
        musicxml_bytes: bytes | None = None,
    ) -> str:
        if musicxml_bytes is None:
            raise ValueError("musicxml_bytes is required for staff rendering.")
        return build_html(title, self.render_svgs(musicxml_bytes))

    def render_svgs(self, musicxml_bytes: bytes) -> list[str]:
        """
        Render a MusicXML document to a list of SVG strings via verovio.

        Raises:
            ValueError: If verovio cannot load the MusicXML data.
        """
        import verovio

        tk = verovio.toolkit()
        tk.setOptions(
            {
                "pageHeight": self._PAGE_HEIGHT,
                "pageWidth": self._PAGE_WIDTH,
                "scale": self._SCALE,
                "pageMarginTop": self._PAGE_MARGIN,
                "pageMarginBottom": self._PAGE_MARGIN,
                "pageMarginLeft": self._PAGE_MARGIN,
                "pageMarginRight": self._PAGE_MARGIN,
                "adjustPageHeight": True,
            }
        )

        loaded: bool = tk.loadData(musicxml_bytes.decode("utf-8"))
        if not loaded:
            raise ValueError("verovio could not load the MusicXML data.")

        page_count: int = tk.getPageCount()
        return [self._render_page_svg(tk, page_no) for page_no in range(1, page_count + 1)]

    def _render_page_svg(self, toolkit: Any, page_no: int) -> str:
        # Some verovio bindings only accept positional arguments
        try:
            return cast(str, toolkit.renderToSVG(pageNo=page_no, xmlDeclaration=False))
        except TypeError:
            try:
                return cast(str, toolkit.renderToSVG(page_no, False))
            except TypeError:
                return cast(str, toolkit.renderToSVG(page_no))
