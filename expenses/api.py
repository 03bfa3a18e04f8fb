# expenses/api.py

from core.api import api_view, iso, money, parse_date, parse_int, parse_json, success

from . import services
from .models import ExpenseRecord, ExpenseType


def serialize_record(record: ExpenseRecord) -> dict:
    return {
        "id": record.pk,
        "type": record.expense_type.name,
        "typeId": record.expense_type_id,
        "amount": money(record.amount),
        "date": iso(record.expense_date),
        "notes": record.notes,
        "managerId": record.manager_id,
        "createdAt": iso(record.created_at),
    }


def serialize_type(expense_type: ExpenseType) -> dict:
    return {
        "id": expense_type.pk,
        "name": expense_type.name,
        "usageCount": expense_type.usage_count,
        "isRestricted": expense_type.is_restricted,
    }


@api_view(["GET", "POST"])
def record_collection(request, actor):
    if request.method == "POST":
        data = parse_json(request)
        record = services.record_expense(
            data.get("type", ""),
            data.get("amount"),
            parse_date(data.get("date"), "date"),
            data.get("notes", ""),
            actor=actor,
        )
        return success(serialize_record(record), status=201)

    records = services.list_expenses(
        actor,
        date_from=parse_date(request.GET.get("from"), "from"),
        date_to=parse_date(request.GET.get("to"), "to"),
    )
    return success([serialize_record(r) for r in records])


@api_view(["GET", "POST"])
def type_collection(request, actor):
    if request.method == "POST":
        data = parse_json(request)
        expense_type = services.create_type(data.get("name", ""), actor=actor)
        return success(serialize_type(expense_type), status=201)

    limit = request.GET.get("limit")
    types = services.suggest_types(
        request.GET.get("q", ""),
        parse_int(limit, "limit") if limit else 10,
    )
    return success([serialize_type(t) for t in types])
