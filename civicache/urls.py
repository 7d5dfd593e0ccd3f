from django.urls import path

from . import views

urlpatterns = [
    path(
        "storage/images/",
        views.update_image_storage,
        name="update-image-storage",
    ),
]
