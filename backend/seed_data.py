"""Seed database with demo data."""
import uuid

from fleetwatch.auth import create_access_token
from fleetwatch.database import build_database
from fleetwatch.models import (
    Client, Geofence, GeofenceAssignment, NotificationRecipient, User
)


def seed():
    """Seed database with demo data."""
    database = build_database()
    database.create_all()
    db = database.session()

    try:
        # Create clients
        clients_data = [
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000001'),
                'name': 'Transportes Norte',
                'email': 'ops@transportes-norte.example',
                'phone': '+5215550000001',
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000002'),
                'name': 'Logistica Sur',
                'email': 'ops@logistica-sur.example',
                'phone': '+5215550000002',
            },
        ]

        clients = []
        for client_data in clients_data:
            client = Client(**client_data)
            db.add(client)
            clients.append(client)

        db.flush()

        # Create users
        users_data = [
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000101'),
                'username': 'operator',
                'name': 'Platform Operator',
                'role': 'operator',
                'client_id': None,
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000102'),
                'username': 'norte',
                'name': 'Norte Dispatcher',
                'role': 'tenant_user',
                'client_id': clients[0].id,
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000103'),
                'username': 'sur',
                'name': 'Sur Dispatcher',
                'role': 'tenant_user',
                'client_id': clients[1].id,
            },
        ]

        users = []
        for user_data in users_data:
            user = User(**user_data)
            db.add(user)
            users.append(user)

        db.flush()

        # Tenant geofence owned by the first client
        depot = Geofence(
            id=uuid.UUID('00000000-0000-0000-0000-000000000201'),
            name='Norte depot',
            category='zona-permitida',
            geometry={'type': 'circle', 'center': [-99.1332, 19.4326], 'radius_m': 250},
            owner_kind='tenant',
            owner_client_id=clients[0].id,
            alert_mode='entry_and_exit',
            entry_labels=['Vehicle {vehicle_id} arrived at {geofence_name}'],
            exit_labels=['Vehicle {vehicle_id} left {geofence_name}'],
            created_by=users[1].id,
        )
        # Platform geofence shared with every client
        customs = Geofence(
            id=uuid.UUID('00000000-0000-0000-0000-000000000202'),
            name='Customs checkpoint',
            category='zona-restringida',
            color='#e53935',
            geometry={
                'type': 'polygon',
                'coordinates': [[-99.20, 19.40], [-99.18, 19.40], [-99.18, 19.42], [-99.20, 19.42]],
            },
            owner_kind='platform',
            alert_mode='entry_only',
            created_by=users[0].id,
        )
        db.add_all([depot, customs])
        db.flush()
        db.add(GeofenceAssignment(geofence_id=customs.id, scope='global', created_by=users[0].id))

        # Recipients
        db.add_all([
            NotificationRecipient(
                client_id=clients[0].id,
                user_id=users[1].id,
                email='alerts@transportes-norte.example',
                channels=['email'],
                alert_types=['entry', 'exit'],
            ),
            NotificationRecipient(
                client_id=clients[1].id,
                user_id=users[2].id,
                whatsapp='+5215550000002',
                channels=['whatsapp'],
                alert_types=['entry'],
                vehicle_ids=['SUR-001', 'SUR-002'],
            ),
        ])

        db.commit()
        print("Database seeded successfully!")
        print("\nDemo bearer tokens (1h):")
        for user in users:
            token = create_access_token({"sub": str(user.id)})
            print(f"  {user.username} ({user.role}): {token}")

    except Exception as e:
        db.rollback()
        print(f"Error seeding database: {e}")
        raise
    finally:
        db.close()
        database.dispose()


if __name__ == "__main__":
    seed()
