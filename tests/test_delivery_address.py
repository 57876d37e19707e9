from app.models.invoice import ClientInfo, DeliveryAddressType, InvoiceRecord
from app.services.delivery_address import resolve_delivery_address

CLIENT = ClientInfo(
    company_name="CLIENT SARL",
    contact_name="Marie Durand",
    address="5 avenue Victor Hugo",
    city="Lyon",
    postal_code="69001",
    country="France",
)


def test_custom_address_wins():
    invoice = InvoiceRecord(
        custom_delivery_address="Entrepôt 4, quai de Saône",
        delivery_address_same_as_billing=True,
        delivery_city="Grenoble",
    )
    result = resolve_delivery_address(invoice, CLIENT)
    assert result.type == DeliveryAddressType.CUSTOM
    assert result.address_lines == ["Entrepôt 4, quai de Saône"]
    assert result.has_delivery_address


def test_same_as_billing_flag():
    invoice = InvoiceRecord(delivery_address_same_as_billing=True)
    result = resolve_delivery_address(invoice, CLIENT)
    assert result.type == DeliveryAddressType.BILLING
    assert result.label == "Même adresse que la facturation"
    assert result.address_lines == [
        "CLIENT SARL", "Marie Durand", "5 avenue Victor Hugo", "69001 Lyon", "France",
    ]
    assert result.address == "\n".join(result.address_lines)


def test_same_as_billing_without_client_address_skipped():
    """Le drapeau seul ne suffit pas : il faut une adresse de facturation."""
    invoice = InvoiceRecord(delivery_address_same_as_billing=True)
    result = resolve_delivery_address(invoice, ClientInfo(company_name="Sans adresse"))
    assert result.type == DeliveryAddressType.NONE
    assert not result.has_delivery_address


def test_invoice_delivery_fields():
    invoice = InvoiceRecord(delivery_address="1 rue du Port", delivery_city="Marseille", delivery_postal_code="13002")
    result = resolve_delivery_address(invoice, CLIENT)
    assert result.type == DeliveryAddressType.INVOICE
    assert result.address_lines[-1] == "13002 Marseille"


def test_client_same_as_address():
    client = CLIENT.model_copy(update={"same_as_address": True, "delivery_city": "Nice"})
    result = resolve_delivery_address(InvoiceRecord(), client)
    assert result.type == DeliveryAddressType.CLIENT_BILLING


def test_client_delivery_address():
    client = CLIENT.model_copy(update={"delivery_address": "9 rue Neuve", "delivery_city": "Nice"})
    result = resolve_delivery_address(InvoiceRecord(), client)
    assert result.type == DeliveryAddressType.CLIENT_DELIVERY
    assert "9 rue Neuve" in result.address_lines


def test_nothing_to_show():
    result = resolve_delivery_address(InvoiceRecord(), None)
    assert result.type == DeliveryAddressType.NONE
    assert result.address_lines == []


def test_unexpected_input_gives_error_type():
    result = resolve_delivery_address(object(), CLIENT)
    assert result.type == DeliveryAddressType.ERROR
    assert not result.has_delivery_address
