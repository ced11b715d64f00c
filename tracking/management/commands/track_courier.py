"""
Run the Location Acquisition Agent for one order, as its courier.

Samples go through the in-process tracking service, exactly as the
courier's REST or WebSocket writes would. The command listens on the
courier's delivery room and ends the session on tracking_stop, on a
terminal status, or when the write boundary refuses a sample.

Usage:
    python manage.py track_courier <order_id> --courier <email>
    python manage.py track_courier <order_id> --courier <email> --source-url http://127.0.0.1:8765/position
    python manage.py track_courier <order_id> --courier <email> --duration 60 --seed 42
"""

import asyncio
import random

from django.apps import apps
from django.core.management.base import BaseCommand, CommandError

from core.models import User
from tracking import events
from tracking.agent import (
    AgentRegistry,
    BroadcasterSink,
    LocationAgent,
    SimulatedPositionSource,
    detect_source,
)
from tracking.exceptions import NotFound


class Command(BaseCommand):
    help = "Stream a courier's position for one order until tracking stops"

    def add_arguments(self, parser):
        parser.add_argument('order_id', help="Order UUID")
        parser.add_argument('--courier', required=True, help="Courier email")
        parser.add_argument('--source-url', default=None, help="Device positioning bridge URL")
        parser.add_argument('--interval', type=float, default=3.0, help="Seconds between samples")
        parser.add_argument('--duration', type=float, default=None, help="Stop after N seconds")
        parser.add_argument('--seed', type=int, default=None, help="Seed for the simulated walk")

    def handle(self, *args, **options):
        config = apps.get_app_config('tracking')
        service = config.service

        try:
            courier = User.objects.get(email=options['courier'])
        except User.DoesNotExist:
            raise CommandError(f"Coursier introuvable: {options['courier']}")
        if not courier.is_courier:
            raise CommandError(f"{courier.email} n'est pas un coursier")

        try:
            order = service.get_order(options['order_id'])
        except NotFound:
            raise CommandError(f"Commande introuvable: {options['order_id']}")

        origin = None
        if order.current_latitude is not None:
            origin = (order.current_latitude, order.current_longitude)
        elif order.pickup_latitude is not None:
            origin = (order.pickup_latitude, order.pickup_longitude)

        rng = random.Random(options['seed']) if options['seed'] is not None else None
        agent = LocationAgent(
            order.pk,
            sink=BroadcasterSink(service, courier),
            source=detect_source(options['source_url']),
            fallback=SimulatedPositionSource(origin=origin, rng=rng),
            interval=options['interval'],
            on_sample=self._print_sample,
            on_state_change=self._print_state,
        )

        self.stdout.write(f"📍 Suivi de {order.order_number} par {courier.email}")
        session = asyncio.run(self._run(config.broadcaster, courier, agent, options['duration']))

        stats = session.statistics if session else None
        if stats is None:
            self.stdout.write(self.style.WARNING("Aucune session enregistrée."))
            return
        self.stdout.write(self.style.SUCCESS(
            f"✅ Session terminée: {stats.sample_count} points, "
            f"{stats.total_distance_km:.3f} km, {stats.average_speed_kmh:.1f} km/h"
        ))

    async def _run(self, broadcaster, courier, agent, duration):
        registry = AgentRegistry()
        registry.register(agent)

        layer = broadcaster.channel_layer
        channel_name = await layer.new_channel()
        delivery_room = events.room('delivery', courier.pk)
        await broadcaster.subscribe(channel_name, events.PRIVATE, delivery_room)

        async def listen():
            while agent.is_active:
                message = await layer.receive(channel_name)
                if message.get('type') == events.HANDLER_TYPE:
                    if await registry.handle_event(message.get('payload', {})):
                        self.stdout.write("🛑 Suivi arrêté par la plateforme")

        listener = asyncio.create_task(listen())
        try:
            await agent.start()
            try:
                await asyncio.wait_for(agent.wait_closed(), timeout=duration)
            except asyncio.TimeoutError:
                pass
        finally:
            await registry.stop_all()
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass
            await broadcaster.unsubscribe(channel_name, events.PRIVATE, delivery_room)
        return agent.session

    def _print_sample(self, position):
        marker = '~' if position.simulated else '•'
        self.stdout.write(f"  {marker} {position.latitude:.6f}, {position.longitude:.6f}")

    def _print_state(self, state):
        if state == 'degraded':
            self.stdout.write(self.style.WARNING("⚠️  Mode dégradé: position simulée"))
        elif state == 'acquiring':
            self.stdout.write("📡 Position de l'appareil")
