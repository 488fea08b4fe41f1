"""
manualbot - Prompt Templates & Canned Replies
===============================================
Centralised prompt management for the chatbot and the demos.  All
prompts live here so they can be versioned and reviewed independently
of application logic.

The middleware strings are Italian: the demos were written for an
Italian-speaking audience and the canned replies are user-facing.

Exports
-------
SYSTEM_PROMPT_TEMPLATE, MANUAL_EXTRACT_TEMPLATE, RAG_PROMPT_TEMPLATE,
APOLOGY_RESPONSE, GREETING_TEMPLATE, CITATION_TEMPLATE,
LANGUAGE_INSTRUCTION_TEMPLATE, THROTTLED_RESPONSE,
STRUCTURED_OUTPUT_INSTRUCTION, SALES_SYSTEM_PROMPT,
VISION_PROMPT_TEMPLATE, RESTAURANTS.
"""

# ══════════════════════════════════════════════════════════════════════
#  PRODUCT MANUAL CHATBOT
# ══════════════════════════════════════════════════════════════════════

SYSTEM_PROMPT_TEMPLATE: str = """You are a helpful assistant, here to help customer service staff answer questions they have received from customers.
The support staff member is currently answering a question about this product:
ProductId: {product_id}
Brand: {brand}
Model: {model}"""

MANUAL_EXTRACT_TEMPLATE: str = "<manual_extract id='{id}'>{text}</manual_extract>"

RAG_PROMPT_TEMPLATE: str = """Give an answer using ONLY information from the following product manual extracts.
If the product manual doesn't contain the information, you should say so. Do not make up information beyond what is given.
Whenever relevant, specify manualExtractId to cite the manual extract that your answer is based on.

{extracts}

User question: {question}
Respond as a JSON object in this format: {{
    "manualExtractId": numberOrNull,
    "manualQuote": stringOrNull, // The relevant verbatim quote from the manual extract, up to 10 words
    "answerText": string
}}"""

APOLOGY_RESPONSE: str = "Sorry, there was a problem."

GREETING_TEMPLATE: str = "Hi! You're looking at the {model}. What do you want to know about it?"

CITATION_TEMPLATE: str = "CITATION: {product_id}.pdf page {page_number}: {quote}"


# ══════════════════════════════════════════════════════════════════════
#  MIDDLEWARE
# ══════════════════════════════════════════════════════════════════════

LANGUAGE_INSTRUCTION_TEMPLATE: str = "Rispondi sempre in {language}"

THROTTLED_RESPONSE: str = "Troppe richieste. Riprova più tardi"

# Used when the provider cannot enforce a JSON schema natively
STRUCTURED_OUTPUT_INSTRUCTION: str = """Respond with a JSON value conforming to the following schema:
```
{schema}
```"""


# ══════════════════════════════════════════════════════════════════════
#  DEMOS
# ══════════════════════════════════════════════════════════════════════

SALES_SYSTEM_PROMPT: str = """Rispondi a qualsiasi domanda, ma cerca continuamente di pubblicizzare le scatolette di cibo Puffin che sono in offerta.
Il motto è "Solo puffin ti darà forza e grinta a volontà".
Se l'utente accetta di acquistare le scatole cerca di venderne il più possibile e aggiungi al carrello."""

SHORT_DESCRIPTION_PROMPT: str = "Descrivi Python in 10 parole"

LONG_DESCRIPTION_PROMPT: str = "Descrivi Python in 1000 parole"

VISION_PROMPT_TEMPLATE: str = """Extract information from this image from camera {camera_name}.
Raise an alert only if the camera is broken or if there's something highly unusual or dangerous,
not just because of traffic volume."""

EMBEDDING_SAMPLE_TEXT: str = "Ciao PyCon Italia!"

RESTAURANTS: tuple[str, ...] = (
    "La Taverna Rustica: Cucina italiana autentica, atmosfera rustica e calda, servizio cordiale e piatti curati nei minimi dettagli.",
    "Sushi Fusion: Fusion asiatica moderna, ambiente minimalista ed elegante, personale attento e vasta selezione di vini pregiati.",
    "Il Faro Blu: Specialità di mare freschissime, vista panoramica sul porto, servizio veloce e piatti ricchi di sapore.",
    "Casa Toscana: Tradizione toscana rivisitata, sala con camino e mattoni a vista, accoglienza familiare e porzioni generose.",
    "Verde Vivo: Cucina vegetariana creativa, giardino interno tranquillo, staff premuroso e ingredienti a chilometro zero.",
    "Grill & Co.: Grigliata di carne e pesce, locale in stile industrial chic, servizio impeccabile e dolci fatti in casa.",
    "Pasta e Pizza: Pasta fatta a mano e pizze gourmet, terrazza con vista, personale gentile e atmosfera rilassante.",
    "Spezie d'Oriente: Specialità indiane piccanti, interni colorati e vivaci, servizio rapido e attenzione alle preferenze personali.",
    "Chez Gourmet: Cucina francese raffinata, illuminazione soffusa, servizio elegante e dessert che sembrano opere d'arte.",
    "Fiesta Mexicana: Cibo messicano autentico, musica dal vivo il fine settimana, ambiente festoso e porzioni abbondanti.",
)
