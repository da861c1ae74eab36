"""Localized user-facing copy for confirmations and status updates.

Only English and Swedish are supported; anything else falls back to
English. The language is taken from the first segment of the request
culture code (``sv-SE`` -> ``sv``).
"""

from typing import Any

from shopagent.schemas.chat import ConfirmationBlock, ConfirmationOption
from shopagent.schemas.session import CartMutationKind

DEFAULT_LANGUAGE = "en"

STRINGS: dict[str, dict[str, str]] = {
    "en": {
        "add_to_cart": "I can add {quantity} x item {identifier} to your cart. Confirm? (yes/no)",
        "add_to_cart_generic": "I can add this item to your cart. Confirm? (yes/no)",
        "set_quantity": "I can update the quantity of item {product_id} in your cart to {quantity}. Confirm? (yes/no)",
        "set_quantity_generic": "I can update the item quantity in your cart. Confirm? (yes/no)",
        "remove_item": "I can remove item {product_id} from your cart. Confirm? (yes/no)",
        "remove_item_generic": "I can remove this item from your cart. Confirm? (yes/no)",
        "yes": "Yes",
        "yes_value": "yes",
        "no": "No",
        "no_value": "no",
        "completed": "Done! Your cart has been updated.",
        "cancelled": "Okay, I've cancelled that. Your cart was not changed.",
        "already_completed": "That action has already been completed.",
        "already_cancelled": "That action was already cancelled.",
        "failed": "Sorry, I couldn't complete the action. Error: {error}",
        "reminder": (
            'I have a pending action: {prompt} Please confirm with "{yes}" or cancel with '
            '"{no}" before I can help with something else.'
        ),
        "status_thinking": "Thinking…",
        "status_product_search": "Searching products…",
        "status_product_get": "Fetching product details…",
        "status_cart_get": "Checking your cart…",
        "status_tool": "Working on it…",
    },
    "sv": {
        "add_to_cart": "Jag kan lägga till {quantity} st av artikel {identifier} i din varukorg. Bekräfta? (ja/nej)",
        "add_to_cart_generic": "Jag kan lägga till artikeln i din varukorg. Bekräfta? (ja/nej)",
        "set_quantity": "Jag kan ändra antalet för artikel {product_id} i din varukorg till {quantity}. Bekräfta? (ja/nej)",
        "set_quantity_generic": "Jag kan ändra antalet i din varukorg. Bekräfta? (ja/nej)",
        "remove_item": "Jag kan ta bort artikel {product_id} från din varukorg. Bekräfta? (ja/nej)",
        "remove_item_generic": "Jag kan ta bort artikeln från din varukorg. Bekräfta? (ja/nej)",
        "yes": "Ja",
        "yes_value": "ja",
        "no": "Nej",
        "no_value": "nej",
        "completed": "Klart! Din varukorg har uppdaterats.",
        "cancelled": "Okej, jag har avbrutit det. Din varukorg ändrades inte.",
        "already_completed": "Den åtgärden är redan genomförd.",
        "already_cancelled": "Den åtgärden är redan avbruten.",
        "failed": "Tyvärr kunde jag inte genomföra åtgärden. Fel: {error}",
        "reminder": (
            'Jag har en väntande åtgärd: {prompt} Vänligen bekräfta med "{yes}" eller avbryt med '
            '"{no}" innan jag kan hjälpa dig med något annat.'
        ),
        "status_thinking": "Tänker…",
        "status_product_search": "Söker produkter…",
        "status_product_get": "Hämtar produktinformation…",
        "status_cart_get": "Kollar din varukorg…",
        "status_tool": "Jobbar på det…",
    },
}


def resolve_language(culture_code: str | None) -> str:
    """Map a culture code to a supported language, defaulting to English."""
    if not culture_code:
        return DEFAULT_LANGUAGE
    language = culture_code.split("-")[0].lower()
    return language if language in STRINGS else DEFAULT_LANGUAGE


def get_string(key: str, culture_code: str | None = None, **values: Any) -> str:
    template = STRINGS[resolve_language(culture_code)][key]
    return template.format(**values) if values else template


def build_confirmation_prompt(
    kind: CartMutationKind, args: dict[str, Any], culture_code: str | None = None
) -> str:
    """Human-readable confirmation question for a cart mutation."""
    product_id = args.get("product_id")
    quantity = args.get("quantity")

    if kind == CartMutationKind.CART_ADD_ITEM:
        identifier = args.get("part_no") or product_id
        if identifier:
            return get_string(
                "add_to_cart", culture_code, quantity=quantity or 1, identifier=identifier
            )
        return get_string("add_to_cart_generic", culture_code)

    if kind == CartMutationKind.CART_SET_ITEM_QUANTITY:
        if product_id and quantity is not None:
            return get_string("set_quantity", culture_code, product_id=product_id, quantity=quantity)
        return get_string("set_quantity_generic", culture_code)

    if product_id:
        return get_string("remove_item", culture_code, product_id=product_id)
    return get_string("remove_item_generic", culture_code)


def build_confirmation_options(culture_code: str | None = None) -> list[ConfirmationOption]:
    strings = STRINGS[resolve_language(culture_code)]
    return [
        ConfirmationOption(id="confirm", label=strings["yes"], value=strings["yes_value"], style="primary"),
        ConfirmationOption(id="cancel", label=strings["no"], value=strings["no_value"], style="secondary"),
    ]


def build_confirmation_block(
    pending_action_id: str,
    kind: CartMutationKind,
    args: dict[str, Any],
    culture_code: str | None = None,
) -> ConfirmationBlock:
    return ConfirmationBlock(
        id=pending_action_id,
        prompt=build_confirmation_prompt(kind, args, culture_code),
        options=build_confirmation_options(culture_code),
    )


def build_pending_reminder(
    kind: CartMutationKind, args: dict[str, Any], culture_code: str | None = None
) -> str:
    """Reminder repeating the outstanding confirmation question."""
    strings = STRINGS[resolve_language(culture_code)]
    return strings["reminder"].format(
        prompt=build_confirmation_prompt(kind, args, culture_code),
        yes=strings["yes_value"],
        no=strings["no_value"],
    )


def status_message(stage: str, culture_code: str | None = None) -> str:
    """Status copy for a stage (``thinking``) or a tool name."""
    strings = STRINGS[resolve_language(culture_code)]
    return strings.get(f"status_{stage}", strings["status_tool"])
