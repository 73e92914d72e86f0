from unittest.mock import MagicMock

import pytest

from wordledger.services.aggregator.client import CheckoutResult
from wordledger.services.errors import AggregatorError, InsufficientBalance, InvalidAmount
from wordledger.services.payments.service import PaymentService
from wordledger.services.purchases.service import PurchaseService


def test_initiate_purchase_attaches_reference(db):
    aggregator = MagicMock()
    aggregator.initiate_checkout.return_value = CheckoutResult(reference="REF1", checkout_request_id="CHK1")
    result = PurchaseService(db, aggregator=aggregator).initiate_purchase("U", "254712345678", 4000)

    aggregator.initiate_checkout.assert_called_once()
    assert aggregator.initiate_checkout.call_args.args[0] == "0712345678"
    assert result.status == "processing"
    assert result.words_granted == 100000
    assert PaymentService(db).get_by_reference("REF1").id == result.payment_id


def test_initiate_purchase_invalid_amount_never_calls_aggregator(db):
    aggregator = MagicMock()
    with pytest.raises(InvalidAmount):
        PurchaseService(db, aggregator=aggregator).initiate_purchase("U", "0712345678", 100)
    aggregator.initiate_checkout.assert_not_called()


def test_initiate_purchase_aggregator_failure(db):
    aggregator = MagicMock()
    aggregator.initiate_checkout.side_effect = AggregatorError("Payment provider temporarily unavailable")
    result = PurchaseService(db, aggregator=aggregator).initiate_purchase("U", "0712345678", 1500)
    assert result.status == "failed"
    assert result.error == "Payment provider temporarily unavailable"
    assert result.reference is None


def test_consume_words(db):
    service = PurchaseService(db, aggregator=MagicMock())
    service.balance.credit("U", 500)
    db.commit()
    assert service.consume_words("U", 200) == {"ok": True, "remaining": 300}
    with pytest.raises(InsufficientBalance):
        service.consume_words("U", 301)
    assert service.balance.get_balance("U")["remaining"] == 300


def test_consume_words_validation_error_keeps_caller_work(db):
    service = PurchaseService(db, aggregator=MagicMock())
    payment = service.payments.create_payment("U", "0712345678", 1500)
    with pytest.raises(ValueError):
        service.consume_words("U", 0)
    assert service.payments.find_payment(payment.id) is not None


def test_add_words_credits_purchased(db):
    service = PurchaseService(db, aggregator=MagicMock())
    assert service.add_words("U", 1200) == {"remaining": 1200, "purchased": 1200, "used": 0}
    with pytest.raises(ValueError):
        service.add_words("U", -1)


def test_usage_stats_counts_only_completed_payments(db):
    service = PurchaseService(db, aggregator=MagicMock())
    done = service.payments.create_payment("U", "0712345678", 2500)
    service.payments.create_payment("U", "0712345678", 1500)
    service.payments.mark_terminal(done.id, "completed")
    db.commit()
    service.consume_words("U", 20000)

    stats = service.usage_stats("U")
    assert stats["balance"]["usage_percentage"] == 33.33
    assert stats["payments"]["count"] == 1
    assert stats["payments"]["total_purchased"] == 60000
