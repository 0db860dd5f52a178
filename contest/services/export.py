"""Spreadsheet exports of submitted works and contest results."""

from collections import defaultdict
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from contest.models.work import Work, WorkStatus

WORKBOOK_CREATOR = "Наследники Победы"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

NOMINATION_SHORT_LABELS = {"vov": "ВОВ", "svo": "СВО"}
WORK_TYPE_LABELS = {"essay": "Сочинение", "drawing": "Рисунок"}
STATUS_LABELS = {
    WorkStatus.MODERATION.value: "На модерации",
    WorkStatus.REVIEW.value: "На проверке",
    WorkStatus.RATED.value: "Оценено",
}

WORKS_COLUMNS = [
    ("№", 5),
    ("Название", 40),
    ("Номинация", 15),
    ("Тип", 12),
    ("Участник", 30),
    ("Школа", 40),
    ("Класс", 8),
    ("Статус", 15),
    ("Эксперт", 25),
    ("Оценка", 10),
    ("Комментарий", 50),
    ("Дата подачи", 18),
]

RESULTS_COLUMNS = [
    ("№", 5),
    ("Место", 8),
    ("Название", 40),
    ("Номинация", 15),
    ("Участник", 30),
    ("Школа", 40),
    ("Класс", 8),
    ("Оценка", 10),
]


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str)


def _new_sheet(title: str, columns: list[tuple[str, int]], header_color: str, header_font_color: str):
    workbook = Workbook()
    workbook.properties.creator = WORKBOOK_CREATOR
    sheet = workbook.active
    sheet.title = title

    sheet.append([header for header, _ in columns])
    for index, (_, width) in enumerate(columns, start=1):
        sheet.column_dimensions[sheet.cell(row=1, column=index).column_letter].width = width
    for cell in sheet[1]:
        cell.font = Font(bold=True, color=header_font_color)
        cell.fill = PatternFill(fill_type="solid", fgColor=header_color)
    return workbook, sheet


def _to_bytes(workbook: Workbook) -> bytes:
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def build_works_workbook(works: list[Work]) -> bytes:
    workbook, sheet = _new_sheet("Работы", WORKS_COLUMNS, "FF0D2137", "FFFFFFFF")

    for number, work in enumerate(works, start=1):
        student = work.student
        rating = work.rating
        sheet.append([
            number,
            work.title,
            NOMINATION_SHORT_LABELS.get(_value(work.nomination), _value(work.nomination)),
            WORK_TYPE_LABELS.get(_value(work.work_type), _value(work.work_type)),
            student.full_name if student else "",
            (student.school or "") if student else "",
            (student.grade or "") if student else "",
            STATUS_LABELS.get(_value(work.status), _value(work.status)),
            work.expert.full_name if work.expert else "-",
            rating.score if rating else "-",
            (rating.comment or "") if rating else "",
            work.created_at.strftime("%d.%m.%Y %H:%M") if work.created_at else "",
        ])

    sheet.auto_filter.ref = f"A1:{sheet.cell(row=1, column=len(WORKS_COLUMNS)).column_letter}1"
    return _to_bytes(workbook)


def rank_by_nomination(works: list[Work]) -> list[tuple[int, Work]]:
    """Return ``(place, work)`` pairs, places restarting at 1 in each nomination."""
    grouped: dict[str, list[Work]] = defaultdict(list)
    for work in works:
        grouped[_value(work.nomination)].append(work)

    ranked = []
    for nomination in sorted(grouped):
        ordered = sorted(
            grouped[nomination],
            key=lambda item: item.rating.score if item.rating else 0,
            reverse=True,
        )
        ranked.extend((place, work) for place, work in enumerate(ordered, start=1))
    return ranked


def build_results_workbook(works: list[Work]) -> bytes:
    workbook, sheet = _new_sheet("Результаты", RESULTS_COLUMNS, "FFD4A017", "FF000000")

    for number, (place, work) in enumerate(rank_by_nomination(works), start=1):
        student = work.student
        sheet.append([
            number,
            place,
            work.title,
            NOMINATION_SHORT_LABELS.get(_value(work.nomination), _value(work.nomination)),
            student.full_name if student else "",
            (student.school or "") if student else "",
            (student.grade or "") if student else "",
            work.rating.score if work.rating else "-",
        ])

    return _to_bytes(workbook)
