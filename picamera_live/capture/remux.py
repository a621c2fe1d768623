"""
FFmpeg remuxing of raw capture chunks.

Wraps raw H.264 elementary streams into MPEG-TS without re-encoding.
"""

import subprocess
import time
from pathlib import Path

from ..utils.exceptions import ConversionError
from ..utils.logger import get_logger


logger = get_logger(__name__)

RAW_CHUNK_EXTENSION = '.h264'
CONVERTED_EXTENSION = '.ts'


def converted_path(chunk_path: Path) -> Path:
    """Get the path a raw chunk is remuxed to."""
    return Path(chunk_path).with_suffix(CONVERTED_EXTENSION)


def build_remux_command(input_path: Path, output_path: Path) -> list[str]:
    """Build FFmpeg command that copies codec streams into a new container."""
    return [
        'ffmpeg',
        '-hide_banner',
        '-loglevel', 'error',
        '-y',
        '-i', str(input_path),
        '-codec', 'copy',
        str(output_path),
    ]


def remux_chunk(chunk_path: Path, timeout: float = 60) -> Path:
    """
    Remux a raw chunk into a playable MPEG-TS file beside it.

    The input file is left in place.

    Args:
        chunk_path: Raw chunk to convert
        timeout: Seconds to allow FFmpeg to run

    Returns:
        Path to the converted file

    Raises:
        ConversionError: If FFmpeg cannot be launched or fails
    """
    start = time.monotonic()
    chunk_path = Path(chunk_path)
    output_path = converted_path(chunk_path)

    try:
        result = subprocess.run(
            build_remux_command(chunk_path, output_path),
            capture_output=True,
            text=True,
            timeout=timeout
        )
    except FileNotFoundError:
        raise ConversionError("ffmpeg not found")
    except subprocess.TimeoutExpired:
        raise ConversionError(f"ffmpeg timed out after {timeout}s converting {chunk_path.name}")
    except OSError as e:
        raise ConversionError(f"Failed to run ffmpeg: {e}")

    if result.returncode != 0:
        error_msg = result.stderr.strip() or f"exit code {result.returncode}"
        raise ConversionError(f"ffmpeg failed converting {chunk_path.name}: {error_msg}")

    elapsed_ms = (time.monotonic() - start) * 1000
    logger.debug(f"Created {output_path} in {elapsed_ms:.0f} ms")

    return output_path
