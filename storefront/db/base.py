from storefront.db.base_class import Base


# IMPORT ALL MODELS HERE (THIS REGISTERS THEM WITH Base.metadata)
from storefront.models.user import User
from storefront.models.product import Product, ProductVariant
from storefront.models.inventory import Inventory
from storefront.models.cart import Cart, CartItem
from storefront.models.order import Order, OrderItem, ShippingRecord
from storefront.models.payment import Payment
from storefront.models.notification import Notification
