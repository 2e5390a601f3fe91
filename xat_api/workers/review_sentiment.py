import csv
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List

from xat_api.settings import Config
from xat_api.workers.ollama_utils import OllamaRequestError, ollama_generate
from xat_api.workers.schema import ReviewSentiment

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

DATA_SUBFOLDER = "steamreviews"
CSV_GAMES_FILE_NAME = "games.csv"
CSV_REVIEWS_FILE_NAME = "reviews.csv"
OUTPUT_FILE_NAME = "exercici2_resposta.json"

REVIEW_PROMPT = (
    "Analyze the sentiment of this game review and respond with ONLY ONE of these "
    "three words: positive, negative, or neutral. Do not include any additional text."
    '\n\nText: "{text}"'
)

Generate = Callable[[str], str]


def read_csv(file_path: Path) -> List[Dict[str, str]]:
    with open(file_path, newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def classify_sentiment(raw: str) -> str:
    """Reduce a free-form model answer to one of the three labels when possible."""
    sentiment = raw.strip().lower()
    for label in (ReviewSentiment.POSITIVE, ReviewSentiment.NEGATIVE, ReviewSentiment.NEUTRAL):
        if label.value in sentiment:
            return label.value
    return sentiment


def analyze_review(text: str, generate: Generate) -> str:
    try:
        return classify_sentiment(generate(REVIEW_PROMPT.format(text=text)))
    except OllamaRequestError as e:
        logger.error(f"❌ Sentiment request failed: {e}")
        return ReviewSentiment.ERROR.value


def analyze_games(
    games: List[Dict[str, str]],
    reviews: List[Dict[str, str]],
    generate: Generate,
    max_games: int = 2,
    max_reviews: int = 2,
) -> Dict:
    results = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "games": [],
    }

    for game in games[:max_games]:
        logger.info(f"🎮 Processing game: {game['name']} ({game['appid']})")
        game_reviews = [r for r in reviews if r.get("app_id") == game["appid"]]

        statistics = {label.value: 0 for label in ReviewSentiment}
        for review in game_reviews[:max_reviews]:
            logger.info(f"Review {review.get('id')}: {review['content'][:100]}...")
            sentiment = analyze_review(review["content"], generate)
            logger.info(f"Sentiment: {sentiment}")
            if sentiment in statistics and sentiment != ReviewSentiment.ERROR.value:
                statistics[sentiment] += 1
            else:
                statistics[ReviewSentiment.ERROR.value] += 1

        results["games"].append(
            {"appid": game["appid"], "name": game["name"], "statistics": statistics}
        )
        logger.info(f"📊 Statistics for {game['name']}: {statistics}")

    return results


def run_review_sentiment(
    config: Config,
    data_path: Path,
    max_games: int = 2,
    max_reviews: int = 2,
    generate: Generate | None = None,
) -> Path:
    games_file = data_path / DATA_SUBFOLDER / CSV_GAMES_FILE_NAME
    reviews_file = data_path / DATA_SUBFOLDER / CSV_REVIEWS_FILE_NAME
    if not games_file.exists() or not reviews_file.exists():
        raise FileNotFoundError(f"Missing CSV files under {data_path / DATA_SUBFOLDER}")

    if generate is None:
        def generate(prompt: str) -> str:
            return ollama_generate(config, config.ollama_model_text, prompt)

    results = analyze_games(
        read_csv(games_file), read_csv(reviews_file), generate, max_games, max_reviews
    )

    output_path = data_path / OUTPUT_FILE_NAME
    output_path.write_text(json.dumps(results, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info(f"✅ Results saved to {output_path}")
    return output_path
