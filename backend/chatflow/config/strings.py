# /chatflow/config/strings.py

# This file contains all user-facing strings, making them easy to manage,
# update, and eventually localize without changing flow or matching logic.

# --- Flow engine ---
GENERIC_APOLOGY = "Desculpe, ocorreu um erro. Vou te conectar com um atendente."
MENU_RETRY_MESSAGE = "Opção inválida. Tente novamente."
QUICK_REPLY_INVALID = "❌ Resposta inválida. Escolha uma das opções acima."
CAPTURE_SUCCESS = "✅ Perfeito!"
QUICK_REPLY_SUCCESS = "✅ Entendido!"
BACK_TO_MAIN_MENU = "🔄 Voltando ao menu principal..."
REDIRECTING = "🔄 Redirecionando..."
RESTARTING_FLOW = "Vamos recomeçar do início."
TRANSFER_HUMAN = "🤝 Conectando você com um atendente humano..."
TRANSFER_DEFAULT = "Transferindo..."
MAX_RETRIES_TRANSFER = "Não consegui entender. Vou te transferir para um atendente."
AI_UNAVAILABLE = "IA não disponível no momento. Vou te conectar com um atendente."
AI_LOW_CONFIDENCE_FALLBACK = "Deixa eu te conectar com alguém que pode te ajudar melhor!"
AI_LOW_CONFIDENCE_TRANSFER = "Não tenho certeza sobre isso. Vou te transferir para um especialista!"
DOCUMENT_GENERATED = "Documento gerado com sucesso!"
NOTIFICATION_SENT = "Notificação enviada com sucesso!"

# --- Input validation ---
VALIDATION_TEXT = "Por favor, digite um texto válido."
VALIDATION_EMAIL = "E-mail inválido. Exemplo: seu@email.com"
VALIDATION_PHONE = "Telefone inválido. Digite DDD + número."
VALIDATION_CPF = "CPF inválido."
VALIDATION_CNPJ = "CNPJ inválido."
VALIDATION_CPF_CNPJ = "CPF/CNPJ inválido."
VALIDATION_NUMBER = "Digite apenas números."

# --- Matching engine ---
MATCH_STILL_LEARNING = "Ainda estou aprendendo. Em breve poderei ajudar melhor!"
MATCH_REPHRASE = "Não tenho certeza sobre isso. Você pode reformular sua pergunta?"
MATCH_ERROR = "Desculpe, tive um problema ao processar sua mensagem. Nossa equipe foi notificada."

# --- Commands ---
COMMAND_RESET = "🔄 Conversa resetada! Vamos começar de novo."
COMMAND_UNKNOWN = "❌ Comando desconhecido. Use /help para ver comandos."
COMMAND_HELP = """❓ *Comandos Disponíveis:*

/menu - Voltar ao menu principal
/status - Ver status do bot
/reset - Resetar conversa
/help - Esta ajuda"""
COMMAND_STATUS = """📊 *Status do Sistema*

IA Treinada: {training_count} exemplos
Usuários com contexto: {user_count}
Modo: {mode}
Usuários ativos no fluxo: {active_users}
Transferências recentes: {transfers}"""
COMMAND_DEBUG = """🔧 *Debug Info:*

Flow: {flow}
Step: {step}
Waiting input: {waiting}"""
