from django.db import models
from django.utils import timezone


class UserAccount(models.Model):
    email = models.EmailField(max_length=254, unique=True)
    # 0x + 64 hex chars
    aptos_address = models.CharField(max_length=66, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']

    def __str__(self) -> str:
        return self.email


class EmailMapping(models.Model):
    email = models.EmailField(max_length=254, unique=True)
    aptos_address = models.CharField(max_length=66)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'email_mappings'

    def __str__(self) -> str:
        return f'{self.email} -> {self.aptos_address}'


class Payment(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        CLAIMED = 'claimed', 'Claimed'
        CANCELLED = 'cancelled', 'Cancelled'
        FAILED = 'failed', 'Failed'

    class Token(models.TextChoices):
        APT = 'APT', 'Aptos Coin'
        USDC = 'USDC', 'USD Coin'

    id = models.CharField(max_length=64, primary_key=True)
    amount = models.DecimalField(max_digits=24, decimal_places=8)
    recipient_email = models.EmailField(max_length=254, db_index=True)
    sender_address = models.CharField(
        max_length=66, blank=True, null=True, db_index=True)
    recipient_address = models.CharField(
        max_length=66, blank=True, null=True, db_index=True)
    token = models.CharField(
        max_length=8,
        choices=Token.choices,
        default=Token.APT,
    )
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    transaction_hash = models.CharField(max_length=66, blank=True, null=True)
    error_message = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    claimed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = 'payments'
        ordering = ['-created_at']

    def mark_claimed(self, tx_hash: str, status: str = Status.CLAIMED) -> None:
        self.status = status
        self.transaction_hash = tx_hash
        self.claimed_at = timezone.now()

    def mark_failed(self, reason: str) -> None:
        self.status = self.Status.FAILED
        self.error_message = reason

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'amount': str(self.amount),
            'recipientEmail': self.recipient_email,
            'senderAddress': self.sender_address or None,
            'recipientAddress': self.recipient_address or None,
            'token': self.token,
            'status': self.status,
            'transactionHash': self.transaction_hash or None,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'claimedAt': self.claimed_at.isoformat() if self.claimed_at else None,
            'errorMessage': self.error_message or None,
        }
