import logging
from datetime import date

from django.conf import settings
from django.core.cache import cache
from django.db.models import Count, Q, Sum
from django.db.models.functions import TruncMonth
from django.utils import timezone

from billing import ledger
from billing.models import Bill, PaymentHistory

logger = logging.getLogger(__name__)

CACHE_KEY = 'billing:stats:all'


def invalidate() -> None:
    cache.delete(CACHE_KEY)


def _month_starts(today: date, months: int = 12) -> list[date]:
    year, month = today.year, today.month
    starts = []
    for _ in range(months):
        starts.append(date(year, month, 1))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(starts))


def _money(value):
    return ledger.to_money(value or 0)


def _month_key(value) -> str:
    if hasattr(value, 'date'):
        value = value.date()
    return value.strftime('%Y-%m')


def compute_stats(bills) -> dict:
    """Aggregate figures over the ``bills`` queryset.

    ``totalRevenue`` is money actually collected (sum of ``paid_amount``),
    ``partialAmount`` is what is still outstanding on partially paid bills.
    """
    agg = bills.aggregate(
        total_bills=Count('id'),
        revenue=Sum('paid_amount'),
        pending=Sum('total_amount', filter=Q(status=Bill.STATUS_PENDING)),
        partial_total=Sum('total_amount', filter=Q(status=Bill.STATUS_PARTIAL)),
        partial_paid=Sum('paid_amount', filter=Q(status=Bill.STATUS_PARTIAL)),
        cancelled=Sum('total_amount', filter=Q(status=Bill.STATUS_CANCELLED)),
        billed=Sum('total_amount', filter=~Q(status=Bill.STATUS_CANCELLED)),
        billed_count=Count('id', filter=~Q(status=Bill.STATUS_CANCELLED)),
    )
    average = _money(agg['billed'] / agg['billed_count']) if agg['billed_count'] else ledger.ZERO

    by_status = {s: 0 for s, _ in Bill.STATUS_CHOICES}
    for row in bills.values('status').annotate(n=Count('id')):
        by_status[row['status']] = row['n']

    months = _month_starts(timezone.localdate())
    since = months[0]
    counts = {
        _month_key(row['month']): row['n']
        for row in bills.filter(created_at__date__gte=since)
        .annotate(month=TruncMonth('created_at')).values('month').annotate(n=Count('id'))
    }
    revenue = {
        _month_key(row['month']): row['amount']
        for row in PaymentHistory.objects.filter(bill__in=bills, paid_at__date__gte=since)
        .annotate(month=TruncMonth('paid_at')).values('month').annotate(amount=Sum('amount'))
    }
    by_month = [
        {
            'month': m.strftime('%Y-%m'),
            'bills': counts.get(m.strftime('%Y-%m'), 0),
            'revenue': str(_money(revenue.get(m.strftime('%Y-%m')))),
        }
        for m in months
    ]

    return {
        'totalBills': agg['total_bills'],
        'totalRevenue': str(_money(agg['revenue'])),
        'pendingAmount': str(_money(agg['pending'])),
        'partialAmount': str(_money(agg['partial_total']) - _money(agg['partial_paid'])),
        'cancelledAmount': str(_money(agg['cancelled'])),
        'averageBillAmount': str(average),
        'billsByStatus': by_status,
        'revenueByMonth': by_month,
        'currency': settings.BILLING_CURRENCY,
    }


def billing_stats(bills=None) -> dict:
    """Billing statistics.

    With no ``bills`` the hospital-wide figures are returned, cached until
    the next billing write.  A narrower queryset is always computed fresh
    so one scope's figures are never served to another.
    """
    if bills is not None:
        return compute_stats(bills)
    data = cache.get(CACHE_KEY)
    if data is None:
        data = compute_stats(Bill.objects.all())
        cache.set(CACHE_KEY, data, settings.BILLING_STATS_CACHE_SECONDS)
        logger.debug('billing stats recomputed')
    return data
