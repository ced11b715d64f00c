import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('order_number', models.CharField(blank=True, max_length=32, unique=True, verbose_name='Numéro de commande')),
                ('status', models.CharField(choices=[('pending', 'En attente'), ('accepted', 'Acceptée'), ('assigned', 'Coursier assigné'), ('picked', 'Colis récupéré'), ('in_transit', 'En transit'), ('delivered', 'Livrée'), ('cancelled', 'Annulée')], default='pending', max_length=20, verbose_name='Statut')),
                ('pickup_latitude', models.FloatField(verbose_name='Latitude retrait')),
                ('pickup_longitude', models.FloatField(verbose_name='Longitude retrait')),
                ('pickup_address', models.CharField(blank=True, max_length=255, verbose_name='Adresse retrait (optionnel)')),
                ('delivery_latitude', models.FloatField(verbose_name='Latitude livraison')),
                ('delivery_longitude', models.FloatField(verbose_name='Longitude livraison')),
                ('delivery_address', models.CharField(blank=True, max_length=255, verbose_name='Adresse livraison (optionnel)')),
                ('current_latitude', models.FloatField(blank=True, null=True)),
                ('current_longitude', models.FloatField(blank=True, null=True)),
                ('current_address', models.CharField(blank=True, max_length=255)),
                ('current_location_at', models.DateTimeField(blank=True, null=True)),
                ('tracking_token', models.CharField(blank=True, max_length=64, verbose_name='Jeton de suivi')),
                ('tracking_token_issued_at', models.DateTimeField(blank=True, null=True)),
                ('estimated_delivery_time', models.DateTimeField(blank=True, null=True)),
                ('notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('assigned_at', models.DateTimeField(blank=True, null=True)),
                ('picked_at', models.DateTimeField(blank=True, null=True)),
                ('in_transit_at', models.DateTimeField(blank=True, null=True)),
                ('delivered_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('courier', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='courier_orders', to=settings.AUTH_USER_MODEL, verbose_name='Coursier')),
                ('customer', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='customer_orders', to=settings.AUTH_USER_MODEL, verbose_name='Client')),
                ('vendor', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='vendor_orders', to=settings.AUTH_USER_MODEL, verbose_name='Vendeur')),
            ],
            options={
                'verbose_name': 'Commande',
                'verbose_name_plural': 'Commandes',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'created_at'], name='tracking_or_status_5f3c1a_idx'),
                    models.Index(fields=['courier', 'status'], name='tracking_or_courier_8b2d4e_idx'),
                    models.Index(fields=['vendor', 'status'], name='tracking_or_vendor__c7e9f0_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='LocationPoint',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('latitude', models.FloatField()),
                ('longitude', models.FloatField()),
                ('address', models.CharField(blank=True, max_length=255)),
                ('recorded_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('courier', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='location_points', to=settings.AUTH_USER_MODEL, verbose_name='Coursier')),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='location_history', to='tracking.order', verbose_name='Commande')),
            ],
            options={
                'verbose_name': 'Position coursier',
                'verbose_name_plural': 'Positions coursier',
                'ordering': ['recorded_at', 'id'],
            },
        ),
    ]
