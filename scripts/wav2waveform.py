import sys, os, logging
from pathlib import Path
from PIL import Image, ImageDraw

from waveform_builder import build_config, render_files, save_image

logger = logging.getLogger("waveform_builder.wav2waveform")

def wav2waveform(wav_path, png_path, **options):
    try:
        config = build_config(**options)
        image = render_files([Path(wav_path)], config)
        save_image(image, Path(png_path))
        return True

    except Exception as e:
        logger.error("Could not render %s: %s", wav_path, e)
        os.makedirs(os.path.dirname(png_path) or ".", exist_ok=True)
        img = Image.new("RGB", (400, 100), (40, 0, 0))
        draw = ImageDraw.Draw(img)
        draw.text((10, 40), f"WAV Error: {str(e)}", fill=(255,255,0))
        img.save(png_path, "PNG")
        return False

if __name__ == "__main__":
    if len(sys.argv) not in (3, 4):
        print("Usage: wav2waveform.py <input.wav> <output.png> [waveform|bars]")
        sys.exit(1)
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    style = sys.argv[3] if len(sys.argv) == 4 else "waveform"
    ok = wav2waveform(sys.argv[1], sys.argv[2], style=style, background="#14141e")
    sys.exit(0 if ok else 1)
