from django.contrib import admin

from smartgroups.models import DiscountRule, Offering, ParticipantRecord


class DiscountRuleInline(admin.TabularInline):
    model = DiscountRule
    extra = 1


class ParticipantRecordInline(admin.TabularInline):
    model = ParticipantRecord
    extra = 0
    can_delete = False
    readonly_fields = ["participant_id", "price_paid", "status", "joined_at", "left_at"]


@admin.register(Offering)
class OfferingAdmin(admin.ModelAdmin):
    list_display = ["title", "kind", "current_participants", "target_participants", "status", "expires_at"]
    list_filter = ["kind", "status"]
    search_fields = ["title", "join_code"]
    # Count and status move only through the join coordinator.
    readonly_fields = ["current_participants", "status", "join_code"]
    inlines = [DiscountRuleInline, ParticipantRecordInline]


@admin.register(ParticipantRecord)
class ParticipantRecordAdmin(admin.ModelAdmin):
    list_display = ["participant_id", "offering", "price_paid", "status", "joined_at"]
    list_filter = ["status", "offering__kind"]
    readonly_fields = ["offering", "participant_id", "price_paid", "status", "joined_at", "left_at"]
