from dataclasses import dataclass
import logging
import os
from dotenv import load_dotenv, find_dotenv
load_dotenv(find_dotenv(filename=".env", usecwd=True))

OUTPUT_FORMATS = ("table", "json")


@dataclass(frozen=True)
class Settings:
    log_level: int
    replacement: str
    output: str


def load_settings() -> Settings:
    invalid = []

    level_name = os.getenv("CANDIDATEPARSER_LOG_LEVEL", "WARNING").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        invalid.append(f"CANDIDATEPARSER_LOG_LEVEL={level_name}")
        level = logging.WARNING

    replacement = os.getenv("CANDIDATEPARSER_REPLACEMENT", "?")
    if len(replacement) != 1:
        invalid.append(f"CANDIDATEPARSER_REPLACEMENT={replacement!r}")

    output = os.getenv("CANDIDATEPARSER_OUTPUT", "table").lower()
    if output not in OUTPUT_FORMATS:
        invalid.append(f"CANDIDATEPARSER_OUTPUT={output}")

    if invalid:
        raise RuntimeError(f"Invalid settings: {', '.join(invalid)}")
    return Settings(log_level=level, replacement=replacement, output=output)
