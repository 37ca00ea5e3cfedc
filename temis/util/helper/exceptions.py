from fastapi import HTTPException, status

MESSAGE_GENERIQUE = "Une erreur est survenue"


class TemisException(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = MESSAGE_GENERIQUE

    def __init__(self, detail: str | None = None, status_code: int | None = None):
        super().__init__(
            status_code=status_code or self.status_code,
            detail=detail or self.default_detail,
        )


class PermissionException(TemisException):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Vous n'avez pas les droits pour effectuer cette action"


class ValidationException(TemisException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Données invalides"


class NotFoundException(TemisException):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Élément non trouvé"


class RemoteStoreException(TemisException):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Erreur de la base de données"


class ExternalServiceException(TemisException):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Le service externe est indisponible"


class RealtimeException(TemisException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Abonnement temps réel impossible"
