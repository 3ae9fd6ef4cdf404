"""
CosmoCard Backend — Spreadsheet Column Layout
===============================================

What:  The one column layout of the cards sheet (21 columns, A..U) and the
       users sheet (19 columns, A..S), plus helpers to build A1 ranges and to
       convert between registry fields and sheet rows.
Why:   Every sheet write is a column-range update, not a full-row replacement,
       so writers and readers must agree on a single field → column table.
       Keeping it in one module means a full-row read always maps back through
       exactly the table the range writes used.

Cards sheet:
    A row id | B card id | C user id | D product name | E label link |
    F label info | G purpose | H application | I INCI | J INCI doc |
    K active RU | L active EN | M booklet RU | N booklet EN |
    O full RU | P full EN | Q TN VED code | R TN VED argument |
    S category code | T category | U category argument
"""

from typing import Dict, List, Mapping, Sequence, Tuple

CARD_FIELDS: Tuple[str, ...] = (
    "row_id",
    "card_id",
    "user_id",
    "product_name",
    "label_link",
    "label_info",
    "purpose",
    "application",
    "inci_text",
    "inci_doc_link",
    "active_ingredients_ru",
    "active_ingredients_en",
    "booklet_composition_ru",
    "booklet_composition_en",
    "full_composition_ru",
    "full_composition_en",
    "tnved_code",
    "tnved_argument",
    "category_code",
    "category",
    "category_argument",
)

CARD_HEADERS: Tuple[str, ...] = (
    "ID",
    "ID карточки",
    "ID пользователя",
    "Название продукта",
    "Ссылка на этикетку",
    "Информация с этикетки",
    "Назначение",
    "Применение",
    "INCI",
    "Документ INCI",
    "Активные ингредиенты (RU)",
    "Активные ингредиенты (EN)",
    "Состав для буклета (RU)",
    "Состав для буклета (EN)",
    "Полный состав (RU)",
    "Полный состав (EN)",
    "Код ТН ВЭД",
    "Аргумент кода ТН ВЭД",
    "Код категории",
    "Категория",
    "Аргумент категории",
)

# Columns written by AI analysis (K..P); blank on create
AI_FIELDS: Tuple[str, ...] = CARD_FIELDS[10:16]

USER_FIELDS: Tuple[str, ...] = (
    "user_id",
    "created_at",
    "display_name",
    "email",
    "telegram_chat_id",
    "phone",
    "channel_code",
    "channel_name",
    "language",
    "role",
    "status",
    "consent",
    "consent_at",
    "last_login_at",
    "login_count",
    "cards_count",
    "deletion_requested",
    "deletion_requested_at",
    "notes",
)

USER_HEADERS: Tuple[str, ...] = (
    "ID пользователя",
    "Дата регистрации",
    "Имя",
    "Email",
    "Telegram Chat ID",
    "Телефон",
    "Код канала",
    "Канал",
    "Язык",
    "Роль",
    "Статус",
    "Согласие",
    "Дата согласия",
    "Последний вход",
    "Количество входов",
    "Количество карточек",
    "Запрос на удаление",
    "Дата запроса на удаление",
    "Примечания",
)


def column_letter(index: int) -> str:
    """Zero-based column index → A1 letter (0 → A, 25 → Z, 26 → AA)."""
    if index < 0:
        raise ValueError(f"Column index must be non-negative, got {index}")
    letters = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def card_column(field: str) -> str:
    return column_letter(CARD_FIELDS.index(field))


def quote_sheet(sheet_name: str) -> str:
    # Sheet names with spaces or non-ASCII letters need quoting in A1 notation
    escaped = sheet_name.replace("'", "''")
    return f"'{escaped}'"


def full_range(sheet_name: str, width: int) -> str:
    return f"{quote_sheet(sheet_name)}!A:{column_letter(width - 1)}"


def field_range(sheet_name: str, row_number: int, first_field: str, last_field: str = "") -> str:
    """
    A1 range covering consecutive card fields on one row.

    Raises ValueError if the fields are not in layout order, so a range
    write can never silently land on the wrong columns.
    """
    start = CARD_FIELDS.index(first_field)
    end = CARD_FIELDS.index(last_field or first_field)
    if end < start:
        raise ValueError(f"Field '{last_field}' precedes '{first_field}' in the layout")
    first = column_letter(start)
    last = column_letter(end)
    if first == last:
        return f"{quote_sheet(sheet_name)}!{first}{row_number}"
    return f"{quote_sheet(sheet_name)}!{first}{row_number}:{last}{row_number}"


def fields_between(first_field: str, last_field: str) -> Tuple[str, ...]:
    start = CARD_FIELDS.index(first_field)
    end = CARD_FIELDS.index(last_field)
    return CARD_FIELDS[start:end + 1]


def to_row(values: Mapping[str, object], fields: Sequence[str] = CARD_FIELDS) -> List[str]:
    """Build a full sheet row; missing fields become blank cells."""
    row = []
    for field in fields:
        value = values.get(field, "")
        row.append("" if value is None else str(value))
    return row


def from_row(row: Sequence[object], fields: Sequence[str] = CARD_FIELDS) -> Dict[str, str]:
    """
    Map a fetched row back to field names.

    The Sheets API trims trailing empty cells, so short rows are padded.
    """
    padded = [("" if cell is None else str(cell)) for cell in row]
    padded.extend([""] * (len(fields) - len(padded)))
    return dict(zip(fields, padded))
