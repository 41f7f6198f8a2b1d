"""
Каталог сообщений API.

Файлы <lang>.json лежат рядом с модулем, язык определяется по имени файла
(en.json -> EN). Ключи, которых нет в каталоге языка, берутся из EN.
"""

import json
import logging
import pathlib
from functools import lru_cache

logger = logging.getLogger(__name__)

CATALOG_DIR = pathlib.Path(__file__).parent.resolve()
DEFAULT_LANG = 'EN'


@lru_cache(maxsize=None)
def load_catalog(lang: str) -> dict:
    path = CATALOG_DIR / f'{lang.lower()}.json'
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        logger.warning(f"Каталог сообщений не найден: {path}")
        return {}
    except json.JSONDecodeError as e:
        logger.critical(f"Ошибка парсинга каталога сообщений {path}: {e}")
        return {}


def text(key: str, user_lang: str = DEFAULT_LANG, **params) -> str:
    """
    Возвращает сообщение по ключу.

    Неизвестный ключ возвращается как есть. Именованные параметры
    подставляются в шаблон сообщения: text(key, missing="50,000").
    """
    lang = user_lang.upper()
    message = load_catalog(lang).get(key)
    if message is None and lang != DEFAULT_LANG:
        message = load_catalog(DEFAULT_LANG).get(key)
    if message is None:
        return key
    return message.format(**params) if params else message
