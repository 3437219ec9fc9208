"""
URL configuration for the clinic platform API.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # API v1
    path('v1/', include('apps.core.urls')),  # Health check
    path('v1/clinics', include('apps.clinics.urls')),
    path('v1/rbac/', include('apps.rbac.urls')),  # Permissions, roles, members, invitations
]
