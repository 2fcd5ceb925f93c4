from django.contrib import admin

from kvstore.models import ValueEntry


@admin.register(ValueEntry)
class ValueEntryAdmin(admin.ModelAdmin):
    list_display = ("token", "key", "version", "created_at", "payload_size")
    list_filter = ("created_at",)
    search_fields = ("key",)
    ordering = ("token", "key")
    fields = ("token", "key", "version", "created_at", "payload_size")
    readonly_fields = fields

    @admin.display(description="payload size")
    def payload_size(self, obj) -> int:
        return len(obj.payload)

    # writes must go through the versioned API
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
