# models/promo_store.py
import datetime

from mongoengine import Document, StringField, IntField, DateTimeField


class PromoStore(Document):
    """
    One promo document per locator.
    `body` holds the JSON text: device keys may contain dots, which Mongo
    does not allow in field names.
    `version` is bumped on every save and doubles as the version token.
    """
    locator = StringField(required=True, unique=True)
    body = StringField(required=True)
    version = IntField(default=1)
    updated_at = DateTimeField(default=datetime.datetime.utcnow)

    meta = {"collection": "promo_store"}
