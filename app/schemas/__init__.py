from app.schemas.auth import SignupRequest, SigninRequest, ConfirmPinRequest, UserResponse, TokenResponse, MessageResponse
from app.schemas.parking import ParkingCreate, ParkingFilters, ParkingResponse, OccupationResponse
