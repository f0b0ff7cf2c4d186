from django.db.models import Q

from billing import ledger
from billing.models import ServiceCatalogItem

DEFAULT_CATALOG = [
    {'name': 'General Consultation', 'category': 'consultation', 'price': '1500.00',
     'description': 'Outpatient consultation with a general physician'},
    {'name': 'Specialist Consultation', 'category': 'consultation', 'price': '3000.00',
     'description': 'Consultation with a specialist'},
    {'name': 'Blood Test - Basic', 'category': 'lab_test', 'price': '800.00',
     'description': 'Complete blood count'},
    {'name': 'Blood Test - Comprehensive', 'category': 'lab_test', 'price': '1500.00',
     'description': 'Metabolic and lipid panel'},
    {'name': 'X-Ray Chest', 'category': 'imaging', 'price': '1200.00',
     'description': 'Chest radiograph, single view'},
    {'name': 'Ultrasound Abdomen', 'category': 'imaging', 'price': '2500.00',
     'description': 'Abdominal ultrasound'},
]


def active_services(*, search=None, category=None):
    qs = ServiceCatalogItem.objects.filter(is_active=True)
    if category:
        qs = qs.filter(category=category)
    if search:
        qs = qs.filter(Q(name__icontains=search) | Q(description__icontains=search))
    return qs.order_by('category', 'name')


def create_service(*, name, category, price, description='') -> ServiceCatalogItem:
    return ServiceCatalogItem.objects.create(
        name=name, category=category, price=ledger.to_money(price), description=description or ''
    )


def seed_default_catalog() -> int:
    """Insert the default services that are missing by name; returns how many were added."""
    added = 0
    for entry in DEFAULT_CATALOG:
        _, created = ServiceCatalogItem.objects.get_or_create(
            name=entry['name'],
            defaults={
                'category': entry['category'],
                'price': ledger.to_money(entry['price']),
                'description': entry['description'],
            },
        )
        added += int(created)
    return added


def format_service(s: ServiceCatalogItem) -> dict:
    return {
        'id': s.id,
        'name': s.name,
        'description': s.description,
        'category': s.category,
        'price': str(s.price),
        'isActive': s.is_active,
    }
