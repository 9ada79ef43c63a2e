from storefront.models.user import User
from storefront.models.product import Product, ProductVariant
from storefront.models.inventory import Inventory
from storefront.models.cart import Cart, CartItem
from storefront.models.order import Order, OrderItem, OrderStatus, ShippingRecord
from storefront.models.payment import Payment, PaymentProvider, PaymentStatus
from storefront.models.notification import Notification, NotificationType
