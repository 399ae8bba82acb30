"""Closed set of entity kinds, each bound to its schema."""

from __future__ import annotations

from enum import Enum

from .errors import UnknownEntityError
from .fields import FieldDescriptor as F
from .fields import FieldKind as K
from .schema import EntitySchema


WORK_STATUSES = ("Plan", "En curso", "Pausado", "Hecho")
TASK_STATUSES = ("Pendiente", "Hoy", "En curso", "Bloqueada", "Hecha")
TRANSACTION_KINDS = ("Ingreso", "Egreso", "Transferencia")
DEBT_OPEN = "Abierta"
DEBT_CLOSED = "Cerrada"
DEBT_STATUSES = (DEBT_OPEN, DEBT_CLOSED)
POA_STATUSES = ("Plan", "En curso", "Riesgo", "Hecho")


PROJECTS = EntitySchema(
    "projects",
    (
        F("name", "Nombre", K.TEXT, required=True),
        F("status", "Estado", K.SELECT, WORK_STATUSES),
        F("start_date", "Inicio", K.DATE),
        F("end_date", "Fin", K.DATE),
    ),
    label="Proyectos",
)

OBJECTIVES = EntitySchema(
    "objectives",
    (
        F("area", "Área", K.TEXT, required=True),
        F("title", "Título", K.TEXT, required=True),
        F("start_date", "Inicio", K.DATE),
        F("end_date", "Fin", K.DATE),
        F("progress", "Progreso (0-100)", K.NUMBER),
        F("status", "Estado", K.SELECT, WORK_STATUSES),
    ),
    label="Metas",
)

TASKS = EntitySchema(
    "tasks",
    (
        F("title", "Título", K.TEXT, required=True),
        F("description", "Descripción", K.TEXT),
        F("priority", "Prioridad (1-5)", K.NUMBER),
        F("due", "Vence", K.DATE),
        F("status", "Estado", K.SELECT, TASK_STATUSES),
        F("project_id", "Proyecto", K.IDENTIFIER),
        F("objective_id", "Meta", K.IDENTIFIER),
    ),
    label="Tareas",
)

CONTACTS = EntitySchema(
    "contacts",
    (
        F("name", "Nombre", K.TEXT, required=True),
        F("company", "Empresa", K.TEXT),
        F("email", "Email", K.TEXT),
        F("phone", "Teléfono", K.TEXT),
        F("last_touch", "Último contacto", K.DATETIME),
        F("next_action", "Próxima acción", K.TEXT),
    ),
    label="Contactos",
)

OPPORTUNITIES = EntitySchema(
    "opportunities",
    (
        F("contact_id", "Contacto", K.IDENTIFIER),
        F("stage", "Etapa", K.TEXT),
        F("est_value", "Valor estimado", K.NUMBER),
        F("est_close_date", "Cierre estimado", K.DATE),
        F("probability", "Probabilidad (0-100)", K.NUMBER),
    ),
    label="Oportunidades",
)

ACCOUNTS = EntitySchema(
    "accounts",
    (
        F("name", "Nombre", K.TEXT, required=True),
        F("type", "Tipo", K.TEXT),
        F("starting_bal", "Saldo inicial", K.NUMBER),
    ),
    label="Cuentas",
)

TRANSACTIONS = EntitySchema(
    "transactions",
    (
        F("date", "Fecha/Hora", K.DATETIME),
        F("kind", "Tipo", K.SELECT, TRANSACTION_KINDS),
        F("account_id", "Cuenta", K.IDENTIFIER),
        F("category", "Categoría", K.TEXT),
        F("amount", "Monto", K.NUMBER),
        F("note", "Nota", K.TEXT),
        F("tags", "Tags (coma)", K.LIST_OF_TEXT),
    ),
    label="Transacciones",
)

EVENTS = EntitySchema(
    "events",
    (
        F("title", "Título", K.TEXT, required=True),
        F("start", "Inicio", K.DATETIME),
        F("end", "Fin", K.DATETIME),
        F("location", "Ubicación", K.TEXT),
        F("note", "Nota", K.TEXT),
    ),
    label="Agenda",
)

DEBTS = EntitySchema(
    "debts",
    (
        F("concept", "Concepto", K.TEXT, required=True),
        F("creditor", "Acreedor", K.TEXT, required=True),
        F("amount", "Monto", K.NUMBER, required=True),
        F("status", "Estado", K.SELECT, DEBT_STATUSES),
        F("due_date", "Vence", K.DATE),
    ),
    label="Deudas",
)

DEBT_PAYMENTS = EntitySchema(
    "debt_payments",
    (
        F("debt_id", "Deuda", K.IDENTIFIER, required=True),
        F("amount", "Monto", K.NUMBER, required=True),
        F("paid_at", "Pagado en", K.DATETIME),
        F("note", "Nota", K.TEXT),
    ),
    order_by="paid_at",
    label="Pagos de Deuda",
)

POA_ITEMS = EntitySchema(
    "poa_items",
    (
        F("year", "Año", K.NUMBER),
        F("area", "Área", K.TEXT),
        F("objective", "Objetivo", K.TEXT),
        F("activity", "Actividad", K.TEXT),
        F("indicator", "Indicador", K.TEXT),
        F("unit", "Unidad", K.TEXT),
        F("baseline", "Línea base", K.NUMBER),
        F("target", "Meta anual", K.NUMBER),
        F("responsible", "Responsable", K.TEXT),
        F("budget", "Presupuesto", K.NUMBER),
        F("planned_months", "Meses plan (1-12, coma)", K.LIST_OF_NUMBER),
        F("progress", "Avance %", K.NUMBER),
        F("spent", "Gastado", K.NUMBER),
        F("status", "Estado", K.SELECT, POA_STATUSES),
    ),
    label="POA",
)

# Written by hooks only; not exposed through EntityKind.
POA_UPDATES = EntitySchema(
    "poa_updates",
    (
        F("item_id", "Ítem", K.IDENTIFIER, required=True),
        F("progress", "Avance %", K.NUMBER),
        F("spent_delta", "Gasto", K.NUMBER),
        F("note", "Nota", K.TEXT),
    ),
    label="Bitácora POA",
)

PROFILES = EntitySchema(
    "profiles",
    (
        F("full_name", "Nombre", K.TEXT),
        F("email", "Email", K.TEXT),
        F("role", "Rol", K.SELECT, ("user", "admin")),
    ),
    label="Usuarios",
)


class EntityKind(str, Enum):
    PROJECTS = "projects"
    OBJECTIVES = "objectives"
    TASKS = "tasks"
    CONTACTS = "contacts"
    OPPORTUNITIES = "opportunities"
    ACCOUNTS = "accounts"
    TRANSACTIONS = "transactions"
    EVENTS = "events"
    DEBTS = "debts"
    DEBT_PAYMENTS = "debt_payments"
    POA = "poa"

    @property
    def schema(self) -> EntitySchema:
        return _SCHEMAS[self]


_SCHEMAS: dict[EntityKind, EntitySchema] = {
    EntityKind.PROJECTS: PROJECTS,
    EntityKind.OBJECTIVES: OBJECTIVES,
    EntityKind.TASKS: TASKS,
    EntityKind.CONTACTS: CONTACTS,
    EntityKind.OPPORTUNITIES: OPPORTUNITIES,
    EntityKind.ACCOUNTS: ACCOUNTS,
    EntityKind.TRANSACTIONS: TRANSACTIONS,
    EntityKind.EVENTS: EVENTS,
    EntityKind.DEBTS: DEBTS,
    EntityKind.DEBT_PAYMENTS: DEBT_PAYMENTS,
    EntityKind.POA: POA_ITEMS,
}


def resolve_entity(key: str) -> EntityKind:
    """Resolve a boundary key (``tasks``, ``poa``, ``poa_items``) to its kind."""
    normalized = (key or "").strip().strip("/").lower()
    try:
        return EntityKind(normalized)
    except ValueError:
        pass
    for kind, schema in _SCHEMAS.items():
        if schema.storage_name == normalized:
            return kind
    raise UnknownEntityError(f"Unknown entity: {key}", key=key)


def all_schemas() -> list[tuple[EntityKind, EntitySchema]]:
    return [(kind, kind.schema) for kind in EntityKind]
