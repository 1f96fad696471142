# /chatflow/config/flows.py

"""
Default bot configuration, defined as pure data (no logic).

The shape is the JSON accepted by ConfigService: flows are keyed by id, each
with an ordered list of typed steps; modes map a mode name to its entry flow.
Used whenever no configuration file is provided.
"""

from typing import Any, Dict

DEFAULT_BOT_CONFIG: Dict[str, Any] = {
    "botName": "Assistente BLACKCORE",
    "mode": "atendimento",
    "modes": {
        "atendimento": {"flowId": "main_menu"},
        "triagem": {"flowId": "assistant_flow"},
    },
    "departments": [
        {
            "id": "1",
            "name": "Vendas",
            "transfer_message": "💼 Transferindo para o setor de Vendas...",
        },
        {
            "id": "2",
            "name": "Suporte",
            "transfer_message": "🛠️ Transferindo para o Suporte Técnico...",
        },
        {
            "id": "3",
            "name": "Financeiro",
            "transfer_message": "💰 Transferindo para o Financeiro...",
        },
    ],
    "fallback": {
        "transfer_message": "Não consegui entender. Vou te transferir para um atendente.",
    },
    "ai": {"enabled": True},
    "flows": {
        "main_menu": {
            "name": "Menu principal",
            "steps": [
                {
                    "id": "welcome",
                    "type": "message",
                    "message": "Olá, {name}! 👋 Bem-vindo(a) à BLACKCORE.",
                    "next": "menu",
                },
                {
                    "id": "menu",
                    "type": "menu",
                    "message": "Como posso ajudar? Escolha uma opção:",
                    "retry_message": "Opção inválida. Digite apenas o número da opção desejada.",
                    "max_retries": 3,
                    "options": [
                        {"id": "1", "label": "Vendas", "action": "goto", "target": "sales_flow"},
                        {"id": "2", "label": "Suporte", "action": "goto", "target": "assistant_flow"},
                        {"id": "3", "label": "Financeiro", "action": "transfer_department", "target": "3"},
                        {"id": "4", "label": "Falar com atendente", "action": "transfer_human"},
                    ],
                },
            ],
        },
        "sales_flow": {
            "name": "Captação de leads",
            "steps": [
                {
                    "id": "intro",
                    "type": "message",
                    "message": "Ótimo! Para te atender melhor, preciso de alguns dados.",
                    "next": "ask_name",
                },
                {
                    "id": "ask_name",
                    "type": "capture_data",
                    "message": "Qual é o seu nome?",
                    "field": "name",
                    "validation": "text",
                    "save_to": "user_context.name",
                    "next": "ask_email",
                },
                {
                    "id": "ask_email",
                    "type": "capture_data",
                    "message": "Qual é o seu e-mail, {name}?",
                    "field": "email",
                    "validation": "email",
                    "save_to": "user_context.email",
                    "next": "ask_document",
                },
                {
                    "id": "ask_document",
                    "type": "capture_data",
                    "message": "Informe seu CPF ou CNPJ:",
                    "field": "document",
                    "validation": "cpf_cnpj",
                    "next": "ask_interest",
                },
                {
                    "id": "ask_interest",
                    "type": "quick_reply",
                    "message": "O que você procura?",
                    "options": [
                        {"id": "1", "label": "Sistema sob medida", "next": "check_email"},
                        {"id": "2", "label": "Site ou aplicativo", "next": "check_email"},
                        {"id": "3", "label": "Voltar ao menu", "next": "main_flow"},
                    ],
                },
                {
                    "id": "check_email",
                    "type": "condition",
                    "condition": "user_context.email exists",
                    "if_true": "send_summary",
                    "if_false": "transfer_sales",
                },
                {
                    "id": "send_summary",
                    "type": "action",
                    "action": "send_notification",
                    "next": "transfer_sales",
                },
                {
                    "id": "transfer_sales",
                    "type": "action",
                    "action": "transfer_department",
                    "department_id": "1",
                    "context_message": "Obrigado, {name}! Um consultor de vendas vai continuar seu atendimento.",
                    "notify_human": True,
                },
            ],
        },
        "assistant_flow": {
            "name": "Assistente virtual",
            "steps": [
                {
                    "id": "ask_question",
                    "type": "ai_response",
                    "message": "Descreva sua dúvida que eu tento te ajudar 🤖",
                    "confidence_threshold": 0.75,
                    "fallback": "escalate",
                    "next": "more_help",
                },
                {
                    "id": "more_help",
                    "type": "quick_reply",
                    "message": "Posso ajudar em algo mais?",
                    "options": [
                        {"id": "1", "label": "Sim", "next": "ask_question"},
                        {"id": "2", "label": "Não, obrigado", "next": "goodbye"},
                        {"id": "3", "label": "Menu principal", "next": "main_flow"},
                    ],
                },
                {
                    "id": "goodbye",
                    "type": "message",
                    "message": "Até logo! Volte sempre que precisar! 😊",
                },
                {
                    "id": "escalate",
                    "type": "action",
                    "action": "transfer_department",
                    "department_id": "2",
                    "notify_human": True,
                    "priority": "high",
                },
            ],
        },
    },
}
