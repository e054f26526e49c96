"""
URL mappings for the lab API.

Paths carry no trailing slash, matching the front-end's endpoint table.
"""
from django.urls import include, path

from .auth_views import jwt_logout_view, jwt_refresh_view, login_view
from .views import catalog, health
from .views.lab_orders import (
    lab_order_cancel,
    lab_order_collect_sample,
    lab_order_confirm_payment,
    lab_order_detail,
    lab_order_start_processing,
    lab_order_stats,
    lab_order_update_status,
    lab_orders,
    lab_result_submit,
    my_lab_orders,
)

urlpatterns = [
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz, name='healthz'),
    # Authentication
    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/refresh', jwt_refresh_view, name='jwt_refresh_view'),
    path('api/auth/logout', jwt_logout_view, name='jwt_logout_view'),
    # Lab orders; fixed segments before the <uuid> routes
    path('api/lab/orders', lab_orders, name='lab_orders'),
    path('api/lab/orders/my-orders', my_lab_orders),
    path('api/lab/orders/stats', lab_order_stats),
    path('api/lab/orders/<str:order_id>', lab_order_detail, name='lab_order_detail'),
    path('api/lab/orders/<str:order_id>/confirm-payment', lab_order_confirm_payment),
    path('api/lab/orders/<str:order_id>/collect-sample', lab_order_collect_sample),
    path('api/lab/orders/<str:order_id>/start-processing', lab_order_start_processing),
    path('api/lab/orders/<str:order_id>/cancel', lab_order_cancel),
    path('api/lab/orders/<str:order_id>/status', lab_order_update_status),
    # Results
    path('api/lab/results', lab_result_submit, name='lab_result_submit'),
    # Catalog
    path('api/lab/tests', catalog.lab_tests),
]
