"""
Validation of payloads received from the Civitai API and the asset worker

The API's response shapes drift over time. These serializers describe the parts
we rely on so a mismatch is reported instead of being stored half-parsed.
"""

from rest_framework import serializers

from .models import NSFWLevel


class CursorMetadataSerializer(serializers.Serializer):
    nextCursor = serializers.CharField(
        required=False, allow_null=True, allow_blank=True
    )
    currentPage = serializers.IntegerField(required=False, allow_null=True)
    pageSize = serializers.IntegerField(required=False, allow_null=True)
    nextPage = serializers.URLField(
        required=False, allow_null=True, allow_blank=True, max_length=4096
    )


class PageSerializer(serializers.Serializer):
    """
    The envelope of a paginated listing. Items are only checked for an
    integer id here; each item is validated against its entity serializer when
    it is ingested so one bad item cannot sink the rest of its page.
    """

    items = serializers.ListField(child=serializers.DictField())
    metadata = CursorMetadataSerializer(required=False, default=dict)

    def validate_items(self, items):
        for position, item in enumerate(items):
            entity_id = item.get("id")
            if isinstance(entity_id, bool) or not isinstance(entity_id, int):
                raise serializers.ValidationError(
                    f"Item {position} does not have an integer id"
                )
        return items


class ImageStatsSerializer(serializers.Serializer):
    likeCount = serializers.IntegerField(min_value=0, required=False, default=0)
    heartCount = serializers.IntegerField(min_value=0, required=False, default=0)
    laughCount = serializers.IntegerField(min_value=0, required=False, default=0)
    cryCount = serializers.IntegerField(min_value=0, required=False, default=0)
    commentCount = serializers.IntegerField(min_value=0, required=False, default=0)


class ImageSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    url = serializers.URLField(max_length=2048)
    hash = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    width = serializers.IntegerField(min_value=0)
    height = serializers.IntegerField(min_value=0)
    nsfw = serializers.BooleanField(required=False, default=False)
    nsfwLevel = serializers.ChoiceField(choices=NSFWLevel.choices)
    createdAt = serializers.DateTimeField()
    postId = serializers.IntegerField(required=False, allow_null=True)
    stats = ImageStatsSerializer()
    meta = serializers.DictField(required=False, allow_null=True)
    username = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class ModelFileSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    type = serializers.CharField(required=False, allow_blank=True)
    sizeKB = serializers.FloatField(required=False, allow_null=True)
    hashes = serializers.DictField(
        child=serializers.CharField(), required=False, default=dict
    )
    downloadUrl = serializers.CharField(required=False, allow_blank=True)
    primary = serializers.BooleanField(required=False, default=False)


class ModelVersionSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    modelId = serializers.IntegerField(required=False, allow_null=True)
    name = serializers.CharField()
    createdAt = serializers.DateTimeField(required=False, allow_null=True)
    baseModel = serializers.CharField(required=False, allow_blank=True, default="")
    files = ModelFileSerializer(many=True, required=False, default=list)


class CreatorSerializer(serializers.Serializer):
    username = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class CreatorProfileSerializer(serializers.Serializer):
    """
    One entry of the /creators listing
    """

    username = serializers.CharField()
    modelCount = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    link = serializers.URLField(max_length=2048, required=False, allow_blank=True)
    image = serializers.URLField(
        max_length=2048, required=False, allow_null=True, allow_blank=True
    )


class ModelSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    description = serializers.CharField(
        required=False, allow_null=True, allow_blank=True, trim_whitespace=False
    )
    type = serializers.CharField(required=False, allow_blank=True, default="")
    nsfw = serializers.BooleanField(required=False, default=False)
    stats = serializers.DictField(required=False, default=dict)
    creator = CreatorSerializer(required=False, allow_null=True)
    tags = serializers.ListField(required=False, default=list)
    modelVersions = serializers.ListField(
        child=serializers.DictField(), required=False, default=list
    )

    def validate_tags(self, tags):
        names = []
        for tag in tags:
            if isinstance(tag, dict):
                tag = tag.get("name")
            if not isinstance(tag, str):
                raise serializers.ValidationError("Tags must be names or objects")
            names.append(tag)
        return names


class ImageStorageSerializer(serializers.Serializer):
    """
    Body of the asset worker's callback once an image has been stored
    """

    imageId = serializers.IntegerField()
    storageKey = serializers.CharField()
    storedUrl = serializers.URLField(max_length=2048)
    size = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    secret = serializers.CharField()
