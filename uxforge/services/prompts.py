"""Prompt templates sent to the LLM.

Templates are Spanish: the product targets Spanish-speaking teams and the
models answer in the language of the prompt.
"""

DEFAULT_CHAT_CONTEXT = (
    "Eres un asistente útil. Da respuestas muy cortas y concisas, máximo 2 líneas. "
    'Si el usuario quiere crear algo, responde "¡Perfecto! Voy a crear eso para ti ahora mismo." '
    "y nada más."
)

DEFAULT_ASSISTANT_CONTEXT = "Usuario interactuando con UXForge"

ASSISTANT_CHAT_PROMPT = """Eres un asistente inteligente de UXForge, una plataforma para crear aplicaciones web a partir de documentos PRD.

INSTRUCCIONES IMPORTANTES:
- Responde de manera natural, útil y conversacional
- Si el usuario quiere CREAR, GENERAR, CONSTRUIR algo (app, página, sitio web, etc.), responde: "¡Perfecto! Voy a crear eso para ti ahora mismo." y nada más
- Para preguntas normales, responde de manera informativa y útil
- Mantén las respuestas concisas pero completas
- Usa un tono amigable y profesional

CONTEXTO ADICIONAL:
{context}

HISTORIAL DE CONVERSACIÓN:
{history}

USUARIO: {message}"""

INTENT_PROMPT = """Analiza este mensaje del usuario y determina si quiere GENERAR CÓDIGO o CHATEAR.

Responde únicamente con "CÓDIGO" o "CHAT".

CÓDIGO = quiere crear, generar, construir, desarrollar una aplicación, página web, formulario, etc.
CHAT = quiere hacer una pregunta, conversar, pedir información, etc.

Mensaje: "{prompt}"

Respuesta:"""

CLARIFICATION_PROMPT = """Actúa como un asistente especializado en crear mockups móviles.

El usuario quiere: "{prompt}"

Contexto: {document_context}

Analiza si REALMENTE necesitas hacer preguntas de clarificación antes de generar el código.

CRITERIOS PARA GENERAR DIRECTO:
- El request menciona cualquier elemento específico de UI (botón, pantalla, formulario, etc.)
- Hay documentos disponibles que pueden dar contexto
- El request es suficientemente específico
- Puedes inferir lo que quiere hacer

CRITERIOS PARA PREGUNTAR (MUY RESTRICTIVO):
- Request extremadamente vago como "crea algo"
- No hay contexto y el request es ambiguo
- Máximo 1-2 preguntas muy específicas

**IMPORTANTE**: Sé muy generoso con GENERAR_DIRECTO. Es mejor crear algo y iterar que preguntar mucho.

Responde con "GENERAR_DIRECTO" o máximo 2 preguntas específicas:"""

DOCUMENT_EXTRACTION_PROMPT = """
Analiza este documento y extrae información estructurada en formato JSON.

El documento puede ser un PRD (Product Requirements Document), especificación técnica, wireframes, o documentos de diseño.

Estructura el JSON de la siguiente manera:
{
  "documentType": "PRD" | "wireframes" | "technical_spec" | "design_doc" | "other",
  "title": "título del documento",
  "summary": "resumen ejecutivo en 2-3 oraciones",
  "sections": [
    {
      "title": "nombre de la sección",
      "content": "contenido principal",
      "type": "introduction" | "requirements" | "features" | "flow" | "technical" | "other"
    }
  ],
  "requirements": [
    "lista de requisitos funcionales y no funcionales identificados"
  ],
  "userFlows": [
    {
      "name": "nombre del flujo",
      "steps": ["paso 1", "paso 2", "..."],
      "screens": ["pantalla 1", "pantalla 2", "..."],
      "priority": "high" | "medium" | "low"
    }
  ],
  "features": [
    {
      "name": "nombre de la funcionalidad",
      "description": "descripción detallada",
      "priority": "high" | "medium" | "low",
      "components": ["componente UI 1", "componente UI 2", "..."]
    }
  ],
  "technicalSpecs": [
    {
      "category": "frontend" | "backend" | "database" | "integration" | "other",
      "requirements": ["especificación técnica 1", "..."]
    }
  ]
}

IMPORTANTE:
- Si hay imágenes, wireframes o diagramas, describe su contenido en detalle
- Identifica todos los componentes UI mencionados o mostrados
- Extrae flujos de usuario paso a paso
- Prioriza features según importancia mencionada o inferida
- Si el documento está en español, mantén el contenido en español
- Si hay información incompleta, indica "información no disponible"

Responde ÚNICAMENTE con el JSON válido, sin texto adicional.
"""

DOCUMENT_ANALYSIS_PROMPT = """{prompt}

# Documento: {file_name}
{file_content}"""
