import json
import logging
from pathlib import Path
from typing import Callable, Dict, List

from xat_api.settings import Config
from xat_api.utils.sentiment import strip_code_fences
from xat_api.workers.ollama_utils import (
    OllamaRequestError,
    image_to_base64,
    ollama_generate,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

IMAGES_SUBFOLDER = Path("imatges") / "animals"
IMAGE_TYPES = {".jpg", ".jpeg", ".png", ".gif"}
OUTPUT_FILE_NAME = "exercici3_resposta.json"

ANIMAL_PROMPT = """Analyze the animal in the image and answer with JSON using exactly this structure:
{
    "nom_comu": "common name of the animal",
    "nom_cientific": "scientific name if known",
    "taxonomia": {"classe": "...", "ordre": "...", "familia": "..."},
    "habitat": {"tipus": [], "regio_geografica": [], "clima": []},
    "dieta": {"tipus": "carnivore/herbivore/omnivore/insectivore", "aliments_principals": []},
    "caracteristiques_fisiques": {
        "mida": {"altura_mitjana_cm": "...", "pes_mitja_kg": "..."},
        "colors_predominants": [],
        "trets_distintius": []
    },
    "estat_conservacio": {"classificacio_IUCN": "LC/NT/VU/EN/CR/EW/EX", "amenaces_principals": []}
}

Answer ONLY with the JSON, without any additional text."""

GenerateImage = Callable[[str, str], str]


def analyze_image(image_path: Path, generate: GenerateImage) -> Dict:
    entry = {"imatge": {"nom_fitxer": image_path.name}}

    image = image_to_base64(image_path)
    if image is None:
        entry["analisi"] = {"error": "The image could not be read"}
        return entry

    logger.info(f"🖼️ Processing image {image_path} ({len(image)} base64 chars)")
    try:
        response = generate(image, ANIMAL_PROMPT)
    except OllamaRequestError as e:
        logger.error(f"❌ No valid response for {image_path.name}: {e}")
        entry["analisi"] = {"error": "No response received from the model"}
        return entry

    try:
        entry["analisi"] = json.loads(strip_code_fences(response))
        logger.info(f"✅ Analysis completed for {image_path.name}")
    except ValueError as e:
        logger.error(f"❌ Could not parse JSON for {image_path.name}: {e}. Response: {response!r}")
        entry["analisi"] = {
            "error": "The response could not be parsed",
            "resposta_original": response,
        }
    return entry


def collect_images(images_dir: Path, all_dirs: bool = False) -> List[Path]:
    images = []
    for animal_dir in sorted(images_dir.iterdir()):
        if not animal_dir.is_dir():
            logger.info(f"Skipping non-directory entry {animal_dir}")
            continue
        for image_file in sorted(animal_dir.iterdir()):
            if image_file.suffix.lower() not in IMAGE_TYPES:
                logger.info(f"Skipping non-image file {image_file}")
                continue
            images.append(image_file)
        if not all_dirs:
            # only the first animal directory unless asked otherwise
            break
    return images


def run_image_analysis(
    config: Config,
    data_path: Path,
    all_dirs: bool = False,
    generate: GenerateImage | None = None,
) -> Path:
    images_dir = data_path / IMAGES_SUBFOLDER
    if not images_dir.is_dir():
        raise FileNotFoundError(f"Images directory does not exist: {images_dir}")

    if generate is None:
        def generate(image: str, prompt: str) -> str:
            return ollama_generate(config, config.ollama_model_vision, prompt, images=[image])

    analisis = [analyze_image(path, generate) for path in collect_images(images_dir, all_dirs)]

    output_path = data_path / OUTPUT_FILE_NAME
    output_path.write_text(
        json.dumps({"analisis": analisis}, indent=4, ensure_ascii=False), encoding="utf-8"
    )
    logger.info(f"✅ Results saved to {output_path} ({len(analisis)} analyses)")
    return output_path
