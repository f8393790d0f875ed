from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image
from rich.console import Console

console = Console()


def save_png(img: Image.Image, out_path: Union[str, Path]) -> Path:
    """Save a layer raster as PNG, creating the parent directory.

    Args:
        img: Decoded layer image
        out_path: Destination file

    Returns:
        The path that was written
    """
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    img.save(out_path, format="PNG")
    return out_path


def blank_image(size: Tuple[int, int]) -> Image.Image:
    """Fully transparent RGBA image, used for layers without pixel data."""
    width, height = max(1, int(size[0])), max(1, int(size[1]))
    return Image.new("RGBA", (width, height), (0, 0, 0, 0))


def image_size(image_path: Union[str, Path]) -> Optional[Tuple[int, int]]:
    """Read the pixel size of a generated raster without decoding it fully."""
    try:
        with Image.open(image_path) as image:
            return image.size
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] File not found - {image_path}")
    except Image.UnidentifiedImageError:
        console.print(f"[red]Error:[/red] Cannot identify image file - {image_path}")
    return None
