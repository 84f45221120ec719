from django.db import models

NO_CURRENCY = "N/A"


class Country(models.Model):
    name = models.CharField(max_length=255)
    # lowercased name, the case-insensitive identity of a row
    name_key = models.CharField(max_length=255, unique=True, editable=False)
    capital = models.CharField(max_length=255, null=True, blank=True)
    region = models.CharField(max_length=255, null=True, blank=True, db_index=True)
    population = models.PositiveBigIntegerField()
    currency_code = models.CharField(max_length=10, default=NO_CURRENCY, db_index=True)
    exchange_rate = models.FloatField(null=True, blank=True)
    estimated_gdp = models.FloatField(null=True, blank=True, db_index=True)
    flag_url = models.URLField(max_length=512, null=True, blank=True)
    last_refreshed_at = models.DateTimeField()

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "countries"

    def __str__(self):
        return self.name

    @staticmethod
    def key_for(name):
        return name.strip().lower()

    def save(self, *args, **kwargs):
        self.name_key = self.key_for(self.name)
        super().save(*args, **kwargs)


class RefreshStatus(models.Model):
    """Singleton summary of the cache, always stored under SINGLETON_ID."""

    SINGLETON_ID = 1

    id = models.PositiveSmallIntegerField(primary_key=True, default=SINGLETON_ID, editable=False)
    total_countries = models.PositiveIntegerField(default=0)
    last_refreshed_at = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=0)

    class Meta:
        verbose_name_plural = "refresh status"

    def __str__(self):
        return f"{self.total_countries} countries (v{self.version})"

    @property
    def cache_status(self):
        return "READY" if self.total_countries > 0 else "EMPTY"

    @classmethod
    def load(cls):
        """Read the singleton; an unsaved empty status if the seeded row is gone."""
        return cls.objects.filter(pk=cls.SINGLETON_ID).first() or cls()
