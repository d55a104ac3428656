from django.contrib import admin

from aptfy.models import EmailMapping, Payment, UserAccount


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "amount", "token", "recipient_email", "status", "transaction_hash", "created_at")
    list_filter = ("status", "token")
    search_fields = ("id", "recipient_email", "sender_address", "recipient_address", "transaction_hash")


@admin.register(EmailMapping)
class EmailMappingAdmin(admin.ModelAdmin):
    list_display = ("email", "aptos_address", "created_at")
    search_fields = ("email", "aptos_address")


@admin.register(UserAccount)
class UserAccountAdmin(admin.ModelAdmin):
    list_display = ("email", "aptos_address", "created_at", "updated_at")
    search_fields = ("email", "aptos_address")
