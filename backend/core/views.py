import logging
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer, TokenRefreshSerializer
from rest_framework_simplejwt.exceptions import AuthenticationFailed, InvalidToken, TokenError
from django.contrib.auth import get_user_model
from django.core.exceptions import ObjectDoesNotExist
from django.shortcuts import get_object_or_404
from django.db.models import Q
from .access import evaluate_access, permission_required
from .errors import Forbidden, ValidationError
from .serializers import UserSerializer, UserCreateSerializer, AccessCheckSerializer, AccessDecisionSerializer

logger = logging.getLogger('backend.core')

User = get_user_model()


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    def validate(self, attrs):
        data = super().validate(attrs)
        if not self.user.is_active:
            raise AuthenticationFailed('User account is disabled.')
        data['user'] = UserSerializer(self.user).data
        return data

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['username'] = user.username
        token['role'] = user.role
        token['location_id'] = user.location_id
        return token


class CustomTokenObtainPairView(TokenObtainPairView):
    serializer_class = CustomTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'login'


class CustomTokenRefreshSerializer(TokenRefreshSerializer):
    """Token refresh that answers 401 when the user behind the token is gone"""
    def validate(self, attrs):
        try:
            return super().validate(attrs)
        except (InvalidToken, TokenError):
            raise InvalidToken('Token is invalid or expired.')
        except ObjectDoesNotExist:
            raise InvalidToken('Token is invalid. User no longer exists.')


class CustomTokenRefreshView(TokenRefreshView):
    serializer_class = CustomTokenRefreshSerializer


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def user_me(request):
    """Current user with role, effective permissions and location"""
    user = request.user
    data = UserSerializer(user).data
    data['is_admin'] = user.is_admin
    data['location'] = (
        {'id': user.location.id, 'name': user.location.name, 'code': user.location.code}
        if user.location_id else None
    )
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def access_check(request):
    """Evaluate the access gate for the current user against roles/permissions"""
    serializer = AccessCheckSerializer(data=request.data)
    if not serializer.is_valid():
        raise ValidationError('Invalid access check', details=serializer.errors)
    decision = evaluate_access(
        request.user,
        required_roles=serializer.validated_data['roles'],
        required_permissions=serializer.validated_data['permissions'],
    )
    return Response(AccessDecisionSerializer(decision).data)


# User views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, permission_required('manage_users')])
def user_list_create(request):
    """List users or create a new user"""
    if request.method == 'GET':
        users = User.objects.select_related('location').order_by('username')
        search = request.query_params.get('search')
        if search:
            users = users.filter(
                Q(username__icontains=search) | Q(email__icontains=search) | Q(first_name__icontains=search)
            )
        role = request.query_params.get('role')
        if role:
            users = users.filter(role=role)
        return Response(UserSerializer(users, many=True).data)

    serializer = UserCreateSerializer(data=request.data)
    if not serializer.is_valid():
        raise ValidationError('Invalid user data', details=serializer.errors)
    user = serializer.save()
    logger.info(f"User {user.username} ({user.role}) created by {request.user.username}")
    return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, permission_required('manage_users')])
def user_detail(request, pk):
    """Retrieve, update or deactivate a user"""
    user = get_object_or_404(User, pk=pk)

    if request.method == 'GET':
        return Response(UserSerializer(user).data)

    if request.method in ('PUT', 'PATCH'):
        serializer = UserSerializer(user, data=request.data, partial=request.method == 'PATCH')
        if not serializer.is_valid():
            raise ValidationError('Invalid user data', details=serializer.errors)
        serializer.save()
        logger.info(f"User {user.username} updated by {request.user.username}")
        return Response(serializer.data)

    if user.pk == request.user.pk:
        raise Forbidden('You cannot deactivate your own account')
    user.is_active = False
    user.save(update_fields=['is_active', 'updated_at'])
    logger.info(f"User {user.username} deactivated by {request.user.username}")
    return Response(status=status.HTTP_204_NO_CONTENT)
