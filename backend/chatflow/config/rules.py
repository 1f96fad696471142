# /chatflow/config/rules.py

import re

# This file contains the "rules engine" tables used to annotate text messages.
# Rules are processed in order, defining their priority. Patterns run against
# normalized text (lowercase, no accents, no punctuation) unless noted.

# Intent rules organized by priority.
# Each rule is a tuple: ("intent_name", [compiled patterns]). First match wins.
INTENT_RULES = [
    ("greeting", [re.compile(r"^(oi|ola|hey|opa|eae|e ai|bom dia|boa tarde|boa noite)\b")]),
    ("farewell", [re.compile(r"^(tchau|ate logo|falou|flw|adeus|bye|ate mais)\b")]),
    ("gratitude", [re.compile(r"(obrigad[oa]|valeu|vlw|thanks|agradeco)")]),
    ("question", [
        re.compile(r"^(qual|como|quando|onde|por que|porque|quem|quanto)\b"),
        # Applied to the raw (sanitized) text, punctuation survives there.
        re.compile(r"\?\s*$"),
    ]),
    ("complaint", [re.compile(r"(problema|erro|bug|falha|nao funciona|reclamacao|reclamar)")]),
    ("praise", [re.compile(r"(parabens|excelente|otimo|perfeito|maravilhoso|amei)")]),
    ("help", [re.compile(r"(ajuda|socorro|help|duvida|como faco)")]),
    ("purchase", [re.compile(r"(comprar|adquirir|contratar|quero|preciso|gostaria de|preco|valor)")]),
    ("support", [re.compile(r"(suporte|atendimento|falar com|preciso de ajuda)")]),
    ("cancel", [re.compile(r"(cancelar|desistir|nao quero|encerrar)")]),
    ("confirm", [re.compile(r"^(sim|yes|claro|com certeza|pode ser|ok|okay|certo)\b")]),
    ("deny", [re.compile(r"^(nao|no|negativo|nunca|jamais)\b")]),
]

# Rules that derive an intent label from a training example's reply text.
# Used to label the classifier corpus and the context boost.
RESPONSE_INTENT_RULES = [
    ("greeting", re.compile(r"\b(saudacao|ola|oi|bem vindo|bom dia|boa tarde|boa noite)\b")),
    ("farewell", re.compile(r"\b(ate logo|ate mais|volte sempre|por nada)\b")),
    ("payment", re.compile(r"\b(pagamento|boleto|pix|financeiro|nota|cartao|fatura)\b")),
    ("sales", re.compile(r"\b(vendas|orcamento|valores|promocoes|negocio)\b")),
    ("support", re.compile(r"\b(suporte|ajuda|ajudar|problema|erro|bug|tecnico)\b")),
]
DEFAULT_RESPONSE_INTENT = "general"

# Query intents whose natural reply carries a different response intent.
# Unlisted query intents are compared as-is (greeting, farewell, support).
QUERY_TO_RESPONSE_INTENT = {
    "purchase": "sales",
    "complaint": "support",
    "help": "support",
    "gratitude": "farewell",
}

# Known entities, matched as substrings of the lowercased text.
KNOWN_ENTITIES = {
    "produtos": ["plano", "serviço", "produto", "pacote", "assinatura"],
    "pagamento": ["pagar", "pagamento", "boleto", "pix", "cartão", "fatura"],
    "suporte": ["problema", "erro", "ajuda", "dúvida", "questão", "bug"],
    "vendas": ["comprar", "adquirir", "contratar", "orçamento", "preço"],
    "cancelamento": ["cancelar", "desistir", "encerrar", "parar"],
}

# Synonym expansion for short conversational tokens.
SYNONYMS = {
    "oi": ["ola", "opa", "eae", "oie", "hello", "hi"],
    "obrigado": ["obrigada", "vlw", "valeu", "thanks", "thx"],
    "sim": ["yes", "claro", "ok"],
    "nao": ["no", "negativo", "jamais"],
}

STOPWORDS = {
    "o", "a", "os", "as", "de", "da", "do", "das", "dos", "e", "para", "com",
    "em", "que", "um", "uma", "no", "na", "por", "se", "me", "eu",
}

# Sentiment lexicon: normalized token -> score in [-5, 5].
SENTIMENT_LEXICON = {
    "bom": 3, "boa": 3, "otimo": 3, "otima": 3, "excelente": 4, "perfeito": 3,
    "maravilhoso": 4, "amei": 3, "adorei": 3, "parabens": 3, "obrigado": 2,
    "obrigada": 2, "valeu": 2, "feliz": 3, "legal": 2, "top": 2, "show": 2,
    "satisfeito": 2, "gostei": 2, "rapido": 1, "good": 3, "great": 3, "thanks": 2,
    "ruim": -3, "pessimo": -4, "pessima": -4, "horrivel": -4, "problema": -2,
    "erro": -2, "bug": -2, "falha": -2, "lento": -2, "demora": -2, "raiva": -3,
    "triste": -2, "chateado": -2, "decepcionado": -3, "frustrado": -3,
    "irritado": -3, "cancelar": -1, "reclamar": -2, "reclamacao": -2,
    "nunca": -1, "bad": -3, "terrible": -4,
}

SENTIMENT_POSITIVE_THRESHOLD = 0.2
SENTIMENT_NEGATIVE_THRESHOLD = -0.2

# Emotion patterns (normalized text).
EMOTION_PATTERNS = {
    "joy": re.compile(r"feliz|alegre|contente|animado|satisfeito|maravilhoso|otimo|excelente"),
    "sadness": re.compile(r"triste|chateado|decepcionado|frustrado|infeliz"),
    "anger": re.compile(r"raiva|irritado|furioso|bravo|revoltado"),
    "fear": re.compile(r"medo|receio|preocupado|ansioso|nervoso"),
    "surprise": re.compile(r"surpreso|chocado|impressionado|uau"),
    "disgust": re.compile(r"nojo|repugnante|horrivel|pessimo"),
}

# Entity patterns (raw text).
EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_RE = re.compile(r"(?:\(?\d{2}\)?\s?)?9?\d{4}-?\d{4}\b")
NUMBER_RE = re.compile(r"\b\d+(?:[.,]\d+)?\b")
DATE_RE = re.compile(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b")
