"""
Gemini function declarations for the invoice chatbot.

These are the only actions the model can take. Argument names are the
camelCase names the model sees; the dispatcher maps them onto the
invoice model.
"""

from notafacil.models.invoice import InvoiceStatus


CREATE_INVOICE = {
    "name": "createInvoice",
    "description": "Creates a new invoice. The issue date is always today.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "clientName": {"type": "STRING", "description": "The name of the client."},
            "amount": {"type": "NUMBER", "description": "The total amount of the invoice."},
            "dueDate": {
                "type": "STRING",
                "description": "The due date for the invoice in YYYY-MM-DD format.",
            },
            "observations": {
                "type": "STRING",
                "description": "Optional notes or observations for the invoice.",
            },
        },
        "required": ["clientName", "amount", "dueDate"],
    },
}

GET_INVOICE_DETAILS = {
    "name": "getInvoiceDetails",
    "description": "Retrieves the full details of a specific invoice using its ID.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "id": {
                "type": "STRING",
                "description": (
                    'The ID of the invoice to retrieve, for example '
                    '"d290f1ee-6c54-4b01-90e6-d701748f0851".'
                ),
            },
        },
        "required": ["id"],
    },
}

UPDATE_INVOICE = {
    "name": "updateInvoice",
    "description": "Updates one or more fields of an existing invoice, identified by its ID.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "id": {"type": "STRING", "description": "The ID of the invoice to update."},
            "clientName": {"type": "STRING", "description": "The new name of the client."},
            "amount": {"type": "NUMBER", "description": "The new total amount of the invoice."},
            "dueDate": {"type": "STRING", "description": "The new due date in YYYY-MM-DD format."},
            "status": {
                "type": "STRING",
                "description": "The new status of the invoice.",
                "enum": [status.value for status in InvoiceStatus],
            },
            "observations": {
                "type": "STRING",
                "description": "The new notes or observations for the invoice.",
            },
        },
        "required": ["id"],
    },
}

DELETE_INVOICE = {
    "name": "deleteInvoice",
    "description": "Deletes an invoice permanently from the system using its ID.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "id": {"type": "STRING", "description": "The ID of the invoice to delete."},
        },
        "required": ["id"],
    },
}

TOOL_DECLARATIONS = [CREATE_INVOICE, GET_INVOICE_DETAILS, UPDATE_INVOICE, DELETE_INVOICE]

TOOL_NAMES = frozenset(declaration["name"] for declaration in TOOL_DECLARATIONS)
