"""
Django Admin configuration for CORE app.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User, UserRole


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Custom admin for User model with email-based auth."""

    list_display = (
        'email',
        'full_name',
        'role',
        'vendor',
        'is_active',
        'date_joined'
    )
    list_filter = ('role', 'is_active', 'is_staff')
    search_fields = ('email', 'full_name', 'phone_number')
    ordering = ('-date_joined',)
    autocomplete_fields = ('vendor',)

    fieldsets = (
        (None, {
            'fields': ('email', 'password')
        }),
        ('Profil', {
            'fields': ('full_name', 'phone_number', 'role')
        }),
        ('Rattachement coursier', {
            'fields': ('vendor',),
            'description': 'Vendeur auquel le coursier est rattaché (coursiers uniquement)'
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions'),
            'classes': ('collapse',)
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'role', 'password1', 'password2'),
        }),
    )

    readonly_fields = ('date_joined',)

    actions = ['detach_from_vendor']

    @admin.action(description="Détacher les coursiers de leur vendeur")
    def detach_from_vendor(self, request, queryset):
        count = queryset.filter(role=UserRole.DELIVERY).update(vendor=None)
        self.message_user(request, f"{count} coursier(s) détaché(s).")
