"""
Prompt catalog for label and INCI analysis.

Each composition field has its own prompt (rules + example). The INCI
analysis sends all six field prompts in one request and asks for a single
JSON object, so one Gemini call fills columns K..P.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List


@dataclass(frozen=True)
class PromptSpec:
    key: str
    name: str
    system_prompt: str
    user_template: Callable[..., str]


PROMPTS: Dict[str, PromptSpec] = {
    "active_ingredients_ru": PromptSpec(
        key="activeIngredients",
        name="Извлечение активных ингредиентов (RU)",
        system_prompt="""Ты эксперт-косметолог. Твоя задача - извлечь из состава INCI только активные ингредиенты без указания процентов.

Правила:
1. Извлекай только АКТИВНЫЕ косметические ингредиенты (не воду, не консерванты, не загустители)
2. НЕ указывай проценты
3. Пиши на русском языке
4. Формат вывода: массив строк
5. Если активных ингредиентов нет - верни пустой массив

Пример:
Вход: "Aqua, Glycerin 5%, Hyaluronic Acid 2%, Phenoxyethanol"
Выход: ["Глицерин", "Гиалуроновая кислота"]""",
        user_template=lambda inci, **_: f"Состав INCI:\n{inci}",
    ),
    "active_ingredients_en": PromptSpec(
        key="activeIngredientsEn",
        name="Извлечение активных ингредиентов (EN)",
        system_prompt="""You are a cosmetic expert. Extract only the active ingredients from the INCI composition, without percentages.

Rules:
1. Extract only ACTIVE cosmetic ingredients (not water, preservatives, thickeners)
2. DO NOT include percentages
3. Write in English
4. Output format: array of strings
5. If there are no active ingredients, return an empty array

Example:
Input: "Aqua, Glycerin 5%, Hyaluronic Acid 2%, Phenoxyethanol"
Output: ["Glycerin", "Hyaluronic Acid"]""",
        user_template=lambda inci, **_: f"INCI composition:\n{inci}",
    ),
    "booklet_composition_ru": PromptSpec(
        key="bookletComposition",
        name="Состав для буклета (RU)",
        system_prompt="""Ты маркетолог косметической компании. Создай краткое и привлекательное описание состава продукта для печатного буклета.

Правила:
1. Используй только самые важные и узнаваемые ингредиенты
2. Пиши простым языком для покупателей
3. Максимум 3-5 ключевых компонентов
4. Добавь краткое объяснение пользы каждого
5. Формат: маркированный список в одной строке с переводами строк
6. Язык: русский

Пример:
"• Гиалуроновая кислота - глубокое увлажнение
• Витамин E - защита от старения
• Масло жожоба - питание и смягчение\"""",
        user_template=lambda inci, product_name="", purpose="", **_: (
            f"Продукт: {product_name}\nНазначение: {purpose}\nПолный INCI: {inci}"
        ),
    ),
    "booklet_composition_en": PromptSpec(
        key="bookletCompositionEn",
        name="Состав для буклета (EN)",
        system_prompt="""You are a cosmetic company marketer. Create a brief and attractive composition description for a printed booklet.

Rules:
1. Use only the most important and recognizable ingredients
2. Write in simple language for customers
3. Maximum 3-5 key components
4. Add a brief explanation of the benefit of each
5. Format: bullet list in one string with line breaks
6. Language: English

Example:
"• Hyaluronic Acid - deep hydration
• Vitamin E - anti-aging protection
• Jojoba Oil - nourishment and softening\"""",
        user_template=lambda inci, product_name="", purpose="", **_: (
            f"Product: {product_name}\nPurpose: {purpose}\nFull INCI: {inci}"
        ),
    ),
    "full_composition_ru": PromptSpec(
        key="fullComposition",
        name="Полный состав (RU)",
        system_prompt="""Ты переводчик косметических составов. Переведи INCI состав на русский язык с сохранением порядка ингредиентов.

Правила:
1. Переводи каждый ингредиент на русский
2. Сохраняй порядок ингредиентов (по убыванию концентрации)
3. Используй официальные косметические термины
4. Формат: через запятую
5. Если не знаешь перевод - оставь на латыни в скобках
{percentages_rule_ru}

Пример:
Вход: "Aqua, Glycerin, Sodium Hyaluronate, Phenoxyethanol"
Выход: "Вода, Глицерин, Гиалуронат натрия, Феноксиэтанол\"""",
        user_template=lambda inci, **_: f"INCI состав:\n{inci}",
    ),
    "full_composition_en": PromptSpec(
        key="fullCompositionEn",
        name="Полный состав (EN)",
        system_prompt="""You are an INCI composition normalizer. Normalize and standardize the INCI composition.

Rules:
1. Use official INCI names
2. Keep the order of ingredients (by concentration descending)
3. Format: comma-separated
4. Capitalize properly (e.g., "Aqua" not "aqua")
{percentages_rule_en}

Example:
Input: "water, glycerin 5%, sodium hyaluronate"
Output: "Aqua, Glycerin, Sodium Hyaluronate\"""",
        user_template=lambda inci, **_: f"INCI composition:\n{inci}",
    ),
}

_PERCENTAGE_RULES = {
    True: {
        "percentages_rule_ru": "6. Сохраняй проценты, если они указаны",
        "percentages_rule_en": "5. Keep percentages if present",
    },
    False: {
        "percentages_rule_ru": "6. Удаляй проценты, если они указаны",
        "percentages_rule_en": "5. Remove percentages if present",
    },
}


def list_prompts() -> List[Dict[str, str]]:
    return [{"key": key, "name": spec.name} for key, spec in PROMPTS.items()]


def build_label_prompt(product_name: str, label_text: str) -> str:
    text = label_text.strip() or "Текст не извлечён, прочитай этикетку с изображений."
    return f"""Ты эксперт по косметической продукции. Проанализируй этикетку продукта "{product_name}".

Текст этикетки:
{text}

Верни ТОЛЬКО JSON без пояснений:
{{
  "labelInfo": "Вся полезная информация с этикетки: производитель, объём, срок годности, предупреждения, способ хранения",
  "suggestedPurpose": "Назначение продукта (для чего он), одной-двумя фразами на русском, или пустая строка",
  "suggestedApplication": "Способ применения, одной-двумя фразами на русском, или пустая строка"
}}

Если на этикетке нет назначения или способа применения, верни для этого поля пустую строку."""


def build_inci_prompt(
    product_name: str,
    purpose: str,
    inci_text: str,
    keep_percentages: bool = False,
) -> str:
    """
    One prompt covering all six composition fields.

    keep_percentages only affects the full composition fields; active
    ingredients never carry percentages.
    """
    inci = inci_text.strip() or "Не указан, прочитай состав с приложенного документа."
    rules = _PERCENTAGE_RULES[keep_percentages]

    sections = []
    for spec in PROMPTS.values():
        sections.append(
            f"### Поле \"{spec.key}\" ({spec.name})\n{spec.system_prompt.format(**rules)}\n\n"
            f"{spec.user_template(inci, product_name=product_name, purpose=purpose)}"
        )

    keys = ",\n".join(
        f'  "{spec.key}": {"[...]" if spec.key.startswith("activeIngredients") else "..."}'
        for spec in PROMPTS.values()
    )
    return (
        f"Проанализируй косметический продукт \"{product_name}\" (назначение: {purpose or 'не указано'}).\n"
        "Заполни каждое поле по его правилам:\n\n"
        + "\n\n".join(sections)
        + "\n\nВерни ТОЛЬКО один JSON-объект такой структуры:\n{\n"
        + keys
        + "\n}"
    )
