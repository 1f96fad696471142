# /chatflow/services/trainer_service.py

import json
import logging
from typing import Dict, List

from chatflow.services.db_service import PersistenceGateway
from chatflow.services.matching_service import ResponseMatcher

# This service feeds the matching engine: the initial seed corpus plus JSON
# export/import of training pairs. Every pair goes through the matcher's
# learn(), so duplicates are rejected the same way as live learning.

logger = logging.getLogger(__name__)

SEED_TRAINING_DATA: List[Dict[str, str]] = [
    # Saudações
    {"input": "oi", "output": "Olá! Como posso ajudar você hoje?"},
    {"input": "ola", "output": "Oi! Em que posso ser útil?"},
    {"input": "bom dia", "output": "Bom dia! Tudo bem? Como posso ajudar?"},
    {"input": "boa tarde", "output": "Boa tarde! No que posso ajudar?"},
    {"input": "boa noite", "output": "Boa noite! Como posso te auxiliar?"},
    # Despedidas
    {"input": "tchau", "output": "Até logo! Volte sempre que precisar! 😊"},
    {"input": "ate logo", "output": "Até mais! Foi um prazer ajudar!"},
    {"input": "obrigado", "output": "Por nada! Estamos aqui sempre que precisar! 🙏"},
    {"input": "valeu", "output": "Tmj! Qualquer coisa é só chamar!"},
    # Horário
    {"input": "qual o horario de atendimento", "output": "Nosso atendimento funciona de segunda a sexta, das 9h às 18h."},
    {"input": "voces atendem sabado", "output": "Aos sábados não temos atendimento, mas voltamos segunda-feira!"},
    {"input": "ate que horas atendem", "output": "Atendemos até as 18h de segunda a sexta-feira."},
    # Empresa
    {"input": "quem e voces", "output": "Somos a BLACKCORE, empresa especializada em desenvolvimento de software e soluções tecnológicas!"},
    {"input": "o que voces fazem", "output": "Desenvolvemos sistemas personalizados, sites, aplicativos e soluções em SaaS para empresas!"},
    # Vendas
    {"input": "quanto custa", "output": "Para te passar um orçamento preciso, vou te conectar com nossa equipe de vendas!"},
    {"input": "qual o preco", "output": "Os valores variam conforme o projeto. Vou transferir você para vendas para conversarmos melhor!"},
    {"input": "quero comprar", "output": "Ótimo! Vou te conectar com vendas para fecharmos o melhor negócio!"},
    {"input": "tem desconto", "output": "Temos várias promoções! Deixa eu te passar para vendas que eles te contam tudo!"},
    # Suporte
    {"input": "preciso de ajuda", "output": "Claro! Estou aqui para isso. Qual problema você está enfrentando?"},
    {"input": "nao ta funcionando", "output": "Sinto muito pelo problema! Pode me descrever o que está acontecendo?"},
    {"input": "deu erro", "output": "Vou te ajudar a resolver! Qual mensagem de erro aparece?"},
    {"input": "bug", "output": "Entendi, vou registrar esse bug e transferir para nosso time técnico resolver!"},
    # Financeiro
    {"input": "quero o boleto", "output": "Vou te conectar com o financeiro para enviar o boleto atualizado!"},
    {"input": "nao recebi a nota fiscal", "output": "Vou verificar com o financeiro e já te envio a nota!"},
    {"input": "forma de pagamento", "output": "Aceitamos boleto, PIX, cartão de crédito e transferência. Qual prefere?"},
    # Dúvidas gerais
    {"input": "como funciona", "output": "Posso te explicar! Sobre qual serviço/produto você quer saber?"},
    {"input": "tenho uma duvida", "output": "Fique à vontade para perguntar! Estou aqui para esclarecer!"},
    {"input": "pode me ajudar", "output": "Com certeza! Diga em que posso ajudar!"},
    # Reclamações
    {"input": "quero reclamar", "output": "Sinto muito pela experiência ruim. Vou registrar sua reclamação e garantir que seja resolvida!"},
    {"input": "pessimo atendimento", "output": "Peço desculpas pelo ocorrido. Vou encaminhar para o supervisor analisar!"},
    # Elogios
    {"input": "muito bom", "output": "Obrigado! Ficamos felizes em ajudar! 😊"},
    {"input": "excelente", "output": "Que ótimo! Seu feedback é muito importante para nós! 🙏"},
    # Menu
    {"input": "menu", "output": "Aqui está o menu:\n\n1️⃣ - Vendas\n2️⃣ - Suporte\n3️⃣ - Financeiro\n4️⃣ - Falar com Atendente\n\nDigite o número da opção desejada!"},
    {"input": "opcoes", "output": "Confira as opções disponíveis:\n\n1️⃣ - Vendas\n2️⃣ - Suporte\n3️⃣ - Financeiro\n4️⃣ - Falar com Atendente"},
]


class TrainerService:
    def __init__(self, matcher: ResponseMatcher, gateway: PersistenceGateway):
        self.matcher = matcher
        self.gateway = gateway

    async def seed_initial_training(self) -> int:
        """Learn the built-in corpus as approved examples. Returns how many were added."""
        logger.info("Starting seed training...")
        added = 0
        for item in SEED_TRAINING_DATA:
            if await self.matcher.learn(item["input"], item["output"], approved=True):
                added += 1
        logger.info(f"Seed training completed. Added {added} examples.")
        return added

    async def export_training_data(self, include_unapproved: bool = False) -> str:
        examples = await self.gateway.get_training_data(include_unapproved=include_unapproved)
        payload = [
            {
                "input": example.input,
                "output": example.output,
                "confidence": example.confidence,
                "usage_count": example.usage_count,
                "approved": example.approved,
            }
            for example in examples
        ]
        return json.dumps(payload, ensure_ascii=False, indent=2)

    async def import_training_data(self, json_data: str) -> int:
        """
        Learn every pair in a JSON array of {input, output, approved?} objects.
        Malformed payloads import nothing; malformed items are skipped.
        """
        try:
            items = json.loads(json_data)
        except json.JSONDecodeError as e:
            logger.error(f"Error importing training data: {e}")
            return 0
        if not isinstance(items, list):
            logger.error("Error importing training data: expected a JSON array")
            return 0

        imported = 0
        for item in items:
            if not isinstance(item, dict) or not item.get("input") or not item.get("output"):
                logger.warning(f"Skipping malformed training item: {item!r}")
                continue
            if await self.matcher.learn(item["input"], item["output"], approved=bool(item.get("approved", False))):
                imported += 1
        logger.info(f"Imported {imported} training examples.")
        return imported
